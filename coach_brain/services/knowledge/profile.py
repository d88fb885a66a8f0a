"""
Profile loader.

Identity is not a collector domain: a snapshot without a readable profile is
meaningless, so a failed read raises ProfileLoadError instead of defaulting.
A user with no profile row yet is not an error and gets the default profile.
"""
import logging
from datetime import date
from typing import Any, Dict, Optional, Tuple

from coach_brain.core.clock import Clock, parse_timestamp, utc_now
from coach_brain.core.database import DataStore, Row
from coach_brain.core.exceptions import ProfileLoadError
from coach_brain.services.knowledge.collectors.base import as_list, to_float, to_int
from coach_brain.services.knowledge.models import ProfileKnowledge

logger = logging.getLogger(__name__)

PROFILE_TABLE = "user_profile"


def calculate_age(birthdate: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if birthdate is None:
        return None
    today = today or utc_now().date()
    years = today.year - birthdate.year
    if (today.month, today.day) < (birthdate.month, birthdate.day):
        years -= 1
    return years if years >= 0 else None


class ProfileLoader:
    """Reads and normalizes the user_profile row."""

    def __init__(self, store: DataStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now

    async def load(self, user_id: str) -> Tuple[ProfileKnowledge, Optional[Row]]:
        """Return (profile, raw row). The raw row is None when no profile exists."""
        try:
            row = await self.store.fetch_one(PROFILE_TABLE, user_id)
        except Exception as e:
            logger.error(f"Failed to load profile for {user_id}: {e}")
            raise ProfileLoadError(user_id, e) from e

        if row is None:
            logger.warning(f"No profile found for {user_id}, using defaults")
            return ProfileKnowledge(user_id=user_id), None

        return profile_from_row(user_id, row, today=self.clock().date()), row


def profile_from_row(user_id: str, row: Dict[str, Any], today: Optional[date] = None) -> ProfileKnowledge:
    born = parse_timestamp(row.get("birthdate"))
    birthdate = born.date() if born else None
    return ProfileKnowledge(
        user_id=user_id,
        display_name=row.get("display_name"),
        full_name=row.get("full_name"),
        email=row.get("email"),
        age=calculate_age(birthdate, today) if birthdate else to_int(row.get("age")),
        sex=row.get("sex"),
        birthdate=birthdate,
        height_cm=to_float(row.get("height_cm")),
        weight_kg=to_float(row.get("weight_kg")),
        target_weight_kg=to_float(row.get("target_weight_kg")),
        body_fat_perc=to_float(row.get("body_fat_perc")),
        objectives=[str(o) for o in as_list(row.get("objectives"))],
        objective=row.get("objective"),
        activity_level=row.get("activity_level"),
        job_category=row.get("job_category"),
        preferred_disciplines=[str(d) for d in as_list(row.get("preferred_disciplines"))],
        default_discipline=row.get("default_discipline"),
        level=row.get("level"),
        equipment=[str(e) for e in as_list(row.get("equipment"))],
        country=row.get("country"),
        language=row.get("language"),
        preferred_language=row.get("preferred_language"),
        has_completed_body_scan=bool(row.get("has_completed_body_scan")),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )

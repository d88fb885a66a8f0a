"""
Body Scan Data Collector

Body composition scans and the direction they are moving in.
Measurements come either from a `measurements` JSON column or from flat
columns (weight_kg, body_fat_perc, ...), whichever the row carries.
"""

from typing import Any, Dict, List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, as_dict, to_float
from coach_brain.services.knowledge.models import BodyMeasurements, BodyScanKnowledge, BodyScanSummary

# Minimum change (percentage points of body fat, or kg of muscle) to call a trend
TREND_THRESHOLD = 0.5

_FLAT_COLUMNS = {
    "weight": "weight_kg",
    "body_fat": "body_fat_perc",
    "muscle_mass": "muscle_mass_kg",
    "waist": "waist_cm",
    "chest": "chest_cm",
    "arms": "arms_cm",
    "legs": "legs_cm",
}


class BodyScanCollector(BaseCollector):
    domain = Domain.BODY_SCAN

    async def _collect(self, user_id: str) -> BodyScanKnowledge:
        rows = await self.store.fetch_rows(
            "body_scans",
            user_id,
            since=self.since(settings.BODY_SCAN_LOOKBACK_DAYS),
            since_column="created_at",
            order_by="created_at",
            limit=settings.BODY_SCAN_LIMIT,
        )
        scans = [
            BodyScanSummary(
                id=str(row["id"]),
                scan_date=parse_timestamp(row.get("created_at")),
                scan_type=row.get("scan_type") or "body",
                measurements=measurements_from_row(row),
            )
            for row in rows
        ]

        latest = next((s.measurements for s in scans if not s.measurements.is_empty()), None)

        return BodyScanKnowledge(
            recent_scans=scans,
            last_scan_date=scans[0].scan_date if scans else None,
            latest_measurements=latest,
            progression_trend=progression_trend(scans),
            has_data=len(scans) > 0,
        )


def measurements_from_row(row: Dict[str, Any]) -> BodyMeasurements:
    nested = as_dict(row.get("measurements"))
    values = {}
    for name, column in _FLAT_COLUMNS.items():
        value = nested.get(name)
        if value is None:
            value = row.get(column)
        values[name] = to_float(value)
    return BodyMeasurements(**values)


def progression_trend(scans: List[BodyScanSummary]) -> Optional[str]:
    """
    Compare the oldest and newest scan in the window (scans arrive newest first).

    Body fat drives the trend; muscle mass is used when body fat is missing.
    """
    if len(scans) < 2:
        return None
    newest, oldest = scans[0].measurements, scans[-1].measurements

    if newest.body_fat is not None and oldest.body_fat is not None:
        delta = newest.body_fat - oldest.body_fat
        if delta <= -TREND_THRESHOLD:
            return "improving"
        if delta >= TREND_THRESHOLD:
            return "declining"
        return "stable"

    if newest.muscle_mass is not None and oldest.muscle_mass is not None:
        delta = newest.muscle_mass - oldest.muscle_mass
        if delta >= TREND_THRESHOLD:
            return "improving"
        if delta <= -TREND_THRESHOLD:
            return "declining"
        return "stable"

    return None

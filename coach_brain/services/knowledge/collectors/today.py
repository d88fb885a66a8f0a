"""
Today Data Collector

Everything the user has logged since UTC midnight, plus the fast that is
currently running even if it started yesterday.
"""

import asyncio
from datetime import datetime
from typing import List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, as_dict, as_list, to_float
from coach_brain.services.knowledge.models import (
    TodayBodyScan,
    TodayData,
    TodayFastingSession,
    TodayMeal,
    TodayTrainingSession,
)


class TodayCollector(BaseCollector):
    domain = Domain.TODAY

    def midnight(self) -> datetime:
        return self.clock().replace(hour=0, minute=0, second=0, microsecond=0)

    async def _collect(self, user_id: str) -> TodayData:
        start = self.midnight()
        sessions, meals, fast, scans = await asyncio.gather(
            self._training(user_id, start),
            self._meals(user_id, start),
            self._fasting(user_id),
            self._body_scans(user_id, start),
        )
        return TodayData(
            training_sessions=sessions,
            meals=meals,
            fasting_session=fast,
            body_scans=scans,
            has_training=len(sessions) > 0,
            has_nutrition=len(meals) > 0,
            has_fasting=fast is not None,
            has_body_scan=len(scans) > 0,
            total_activities=len(sessions) + len(meals) + len(scans) + (1 if fast else 0),
        )

    async def _training(self, user_id: str, start: datetime) -> List[TodayTrainingSession]:
        rows = await self.store.fetch_rows(
            "training_sessions",
            user_id,
            since=start,
            order_by="created_at",
            limit=settings.TODAY_ROW_LIMIT,
        )
        sessions = []
        for row in rows:
            prescription = as_dict(row.get("prescription"))
            exercises = as_list(prescription.get("exercises")) or as_list(prescription.get("blocks"))
            sessions.append(TodayTrainingSession(
                id=str(row["id"]),
                discipline=row.get("discipline") or "force",
                start_time=parse_timestamp(row.get("created_at")),
                end_time=parse_timestamp(row.get("completed_at")),
                status=row.get("status") or "planned",
                exercise_count=len(exercises),
            ))
        return sessions

    async def _meals(self, user_id: str, start: datetime) -> List[TodayMeal]:
        rows = await self.store.fetch_rows(
            "meals",
            user_id,
            since=start,
            since_column="consumed_at",
            order_by="consumed_at",
            limit=settings.TODAY_ROW_LIMIT,
        )
        return [
            TodayMeal(
                id=str(row["id"]),
                name=row.get("meal_name") or "Meal",
                meal_type=row.get("meal_type") or "other",
                consumed_at=parse_timestamp(row.get("consumed_at")),
                calories=to_float(row.get("total_kcal"), 0),
                protein=to_float(row.get("protein_g"), 0),
            )
            for row in rows
        ]

    async def _fasting(self, user_id: str) -> Optional[TodayFastingSession]:
        row = await self.store.fetch_one(
            "fasting_sessions",
            user_id,
            filters={"status": "in_progress"},
            order_by="start_time",
        )
        if row is None:
            return None
        started = parse_timestamp(row.get("start_time"))
        elapsed = 0.0
        if started is not None:
            elapsed = round((self.clock() - started).total_seconds() / 3600, 1)
        return TodayFastingSession(
            id=str(row["id"]),
            start_time=started,
            target_duration=to_float(row.get("target_hours"), 0),
            current_duration=elapsed,
            status="in_progress",
        )

    async def _body_scans(self, user_id: str, start: datetime) -> List[TodayBodyScan]:
        rows = await self.store.fetch_rows(
            "body_scans",
            user_id,
            since=start,
            order_by="created_at",
            limit=settings.TODAY_ROW_LIMIT,
        )
        return [
            TodayBodyScan(
                id=str(row["id"]),
                scan_type=row.get("scan_type") or "body",
                scan_time=parse_timestamp(row.get("created_at")),
            )
            for row in rows
        ]

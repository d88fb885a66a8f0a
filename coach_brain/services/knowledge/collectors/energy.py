"""
Energy Data Collector

Wearable and manual activities, connected devices and biometrics.

Training load is duration weighted by intensity. Fatigue compares the last
7 days of load against the chronic weekly average (an acute:chronic ratio
of 1.0 maps to 50); recovery is the complement, nudged by HRV relative to
its own average over the window.
"""

import asyncio
import statistics
from datetime import timedelta
from typing import Any, Dict, List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, to_float
from coach_brain.services.knowledge.models import Biometrics, EnergyActivity, EnergyKnowledge

INTENSITY_FACTORS = {
    "very_low": 0.5,
    "low": 1.0,
    "medium": 2.0,
    "moderate": 2.0,
    "high": 3.0,
    "very_high": 4.0,
}
HRV_ADJUSTMENT = 10


class EnergyCollector(BaseCollector):
    domain = Domain.ENERGY

    async def _collect(self, user_id: str) -> EnergyKnowledge:
        rows, devices = await asyncio.gather(
            self.store.fetch_rows(
                "activities",
                user_id,
                since=self.since(settings.ENERGY_LOOKBACK_DAYS),
                since_column="timestamp",
                order_by="timestamp",
                limit=settings.ENERGY_ACTIVITY_LIMIT,
            ),
            self._optional(self._connected_devices(user_id), [], "connected devices"),
        )
        activities = [activity_from_row(row) for row in rows]

        load_7d = self._load_since(activities, days=7)
        fatigue, recovery = self._scores(activities, rows, load_7d)

        return EnergyKnowledge(
            recent_activities=activities,
            connected_devices=devices,
            has_wearable_connected=len(devices) > 0,
            biometrics=biometrics_from_rows(rows),
            recovery_score=recovery,
            fatigue_score=fatigue,
            training_load_7d=round(load_7d, 1),
            last_activity_date=activities[0].timestamp if activities else None,
            has_data=len(activities) > 0,
        )

    async def _connected_devices(self, user_id: str) -> List[str]:
        rows = await self.store.fetch_rows(
            "connected_devices",
            user_id,
            filters={"status": "connected"},
            order_by="created_at",
            limit=10,
        )
        return [row.get("display_name") or row.get("provider") or "device" for row in rows]

    def _load_since(self, activities: List[EnergyActivity], days: int) -> float:
        cutoff = self.clock() - timedelta(days=days)
        return sum(
            activity_load(a) for a in activities
            if a.timestamp is not None and a.timestamp >= cutoff
        )

    def _scores(self, activities, rows, load_7d: float):
        if not activities:
            return None, None
        weeks = settings.ENERGY_LOOKBACK_DAYS / 7
        chronic_weekly = self._load_since(activities, settings.ENERGY_LOOKBACK_DAYS) / weeks
        ratio = load_7d / chronic_weekly if chronic_weekly > 0 else 1.0
        fatigue = _clamp(ratio * 50)

        recovery = 100 - fatigue
        hrvs = [to_float(row.get("hrv_avg")) for row in rows if to_float(row.get("hrv_avg")) is not None]
        if len(hrvs) >= 2:
            recovery += HRV_ADJUSTMENT if hrvs[0] >= statistics.mean(hrvs) else -HRV_ADJUSTMENT
        return round(fatigue), round(_clamp(recovery))


def activity_from_row(row: Dict[str, Any]) -> EnergyActivity:
    return EnergyActivity(
        id=str(row["id"]),
        activity_type=row.get("type") or "other",
        timestamp=parse_timestamp(row.get("timestamp")),
        duration_min=to_float(row.get("duration_min"), 0),
        calories=to_float(row.get("calories_est"), 0),
        intensity=row.get("intensity"),
        hr_avg=to_float(row.get("hr_avg")),
        hr_max=to_float(row.get("hr_max")),
        source=row.get("source") or "manual",
    )


def activity_load(activity: EnergyActivity) -> float:
    return activity.duration_min * INTENSITY_FACTORS.get(activity.intensity or "medium", 2.0)


def biometrics_from_rows(rows: List[Dict[str, Any]]) -> Biometrics:
    """Latest value for resting metrics, max for HR max, mean for average HR."""

    def latest(column: str) -> Optional[float]:
        for row in rows:
            value = to_float(row.get(column))
            if value is not None:
                return value
        return None

    hr_max = [v for v in (to_float(row.get("hr_max")) for row in rows) if v is not None]
    hr_avg = [v for v in (to_float(row.get("hr_avg")) for row in rows) if v is not None]

    return Biometrics(
        hr_resting=latest("hr_resting"),
        hr_max=max(hr_max) if hr_max else None,
        hr_avg=round(statistics.mean(hr_avg)) if hr_avg else None,
        hrv_avg=latest("hrv_avg"),
        vo2max_estimated=latest("vo2max_estimated"),
    )


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))

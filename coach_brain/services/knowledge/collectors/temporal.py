"""
Temporal Pattern Collector

When the user trains: weekday distribution, preferred hours, rest days,
frequency and consistency over the lookback window.
"""

from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, List

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, to_float
from coach_brain.services.knowledge.models import TemporalKnowledge, TrainingPattern

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
CONSISTENT_WEEK_SESSIONS = 2
OPTIMAL_HOURS = 3


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


class TemporalCollector(BaseCollector):
    domain = Domain.TEMPORAL

    async def _collect(self, user_id: str) -> TemporalKnowledge:
        rows = await self.store.fetch_rows(
            "training_sessions",
            user_id,
            columns=["id", "created_at", "completed_at", "duration_actual_min"],
            since=self.since(settings.TEMPORAL_LOOKBACK_DAYS),
            order_by="created_at",
            limit=settings.TEMPORAL_SESSION_LIMIT,
        )
        starts: List[datetime] = []
        durations: List[float] = []
        for row in rows:
            start = parse_timestamp(row.get("created_at"))
            if start is None:
                continue
            starts.append(start)
            duration = to_float(row.get("duration_actual_min"))
            if duration:
                durations.append(duration)

        if not starts:
            return TemporalKnowledge()

        hours = Counter(start.hour for start in starts)
        weeks = max(settings.TEMPORAL_LOOKBACK_DAYS / 7, 1)

        return TemporalKnowledge(
            training_patterns=weekday_patterns(starts),
            optimal_training_hours=[hour for hour, _ in hours.most_common(OPTIMAL_HOURS)],
            preferred_rest_days=rest_days(starts),
            average_rest_days_between_sessions=average_gap_days(starts),
            weekly_frequency=round(len(starts) / weeks, 1),
            preferred_time_of_day=Counter(time_of_day(s.hour) for s in starts).most_common(1)[0][0],
            average_session_duration=round(sum(durations) / len(durations)) if durations else 0,
            consistency_score=self._consistency(starts),
            has_data=True,
        )

    def _consistency(self, starts: List[datetime]) -> float:
        """Share (0-100) of weeks in the window with at least two sessions."""
        now = self.clock()
        total_weeks = max(settings.TEMPORAL_LOOKBACK_DAYS // 7, 1)
        per_week: Dict[int, int] = defaultdict(int)
        for start in starts:
            week = (now - start).days // 7
            if 0 <= week < total_weeks:
                per_week[week] += 1
        consistent = sum(1 for count in per_week.values() if count >= CONSISTENT_WEEK_SESSIONS)
        return round(100 * consistent / total_weeks)


def weekday_patterns(starts: List[datetime]) -> List[TrainingPattern]:
    by_day: Dict[int, List[int]] = defaultdict(list)
    for start in starts:
        by_day[start.weekday()].append(start.hour)
    patterns = [
        TrainingPattern(
            weekday=WEEKDAYS[day],
            session_count=len(hours),
            preferred_hour=Counter(hours).most_common(1)[0][0],
        )
        for day, hours in by_day.items()
    ]
    patterns.sort(key=lambda p: (-p.session_count, WEEKDAYS.index(p.weekday)))
    return patterns


def rest_days(starts: List[datetime]) -> List[str]:
    trained = {start.weekday() for start in starts}
    return [WEEKDAYS[day] for day in range(7) if day not in trained]


def average_gap_days(starts: List[datetime]) -> float:
    """Mean number of calendar days without training between two sessions."""
    days = sorted({start.date() for start in starts})
    if len(days) < 2:
        return 0
    gaps = [(later - earlier).days - 1 for earlier, later in zip(days, days[1:])]
    return round(sum(gaps) / len(gaps), 1)


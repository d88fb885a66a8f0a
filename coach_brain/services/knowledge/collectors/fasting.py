"""
Fasting Data Collector

Intermittent fasting history and the fast currently in progress, if any.
"""

from collections import Counter
from typing import Any, Dict

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, to_float
from coach_brain.services.knowledge.models import FastingKnowledge, FastingSessionSummary


class FastingCollector(BaseCollector):
    domain = Domain.FASTING

    async def _collect(self, user_id: str) -> FastingKnowledge:
        rows = await self.store.fetch_rows(
            "fasting_sessions",
            user_id,
            since=self.since(settings.FASTING_LOOKBACK_DAYS),
            since_column="start_time",
            order_by="start_time",
            limit=settings.FASTING_SESSION_LIMIT,
        )
        sessions = [self._session(row) for row in rows]

        current = next((s for s in sessions if s.status == "in_progress"), None)
        completed = [s for s in sessions if s.status == "completed"]
        durations = [s.actual_duration for s in completed if s.actual_duration]
        protocols = Counter(s.protocol for s in sessions if s.protocol)

        return FastingKnowledge(
            recent_sessions=sessions,
            current_session=current,
            average_fasting_duration=round(sum(durations) / len(durations), 1) if durations else 0,
            total_sessions_completed=len(completed),
            preferred_protocol=protocols.most_common(1)[0][0] if protocols else None,
            last_session_date=sessions[0].start_time if sessions else None,
            has_data=len(sessions) > 0,
        )

    def _session(self, row: Dict[str, Any]) -> FastingSessionSummary:
        start = parse_timestamp(row.get("start_time"))
        end = parse_timestamp(row.get("end_time"))
        status = row.get("status") or ("completed" if end else "in_progress")

        actual = to_float(row.get("actual_duration_hours"))
        if status == "in_progress" and start is not None:
            actual = round((self.clock() - start).total_seconds() / 3600, 1)
        elif actual is None and start is not None and end is not None:
            actual = round((end - start).total_seconds() / 3600, 1)

        return FastingSessionSummary(
            id=str(row["id"]),
            start_time=start,
            end_time=end,
            target_duration=to_float(row.get("target_hours"), 0),
            actual_duration=actual,
            protocol=row.get("protocol") or "custom",
            status=status,
            quality=to_float(row.get("quality_rating")),
        )


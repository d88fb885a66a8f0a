"""
Training Data Collector

Recent sessions, current loads, exercise preferences, progression patterns,
personal records and active goals.
"""

import asyncio
import statistics
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import (
    BaseCollector,
    as_dict,
    as_list,
    to_float,
    to_int,
)
from coach_brain.services.knowledge.models import (
    ExerciseDetail,
    ExercisePreference,
    PersonalRecord,
    ProgressionPattern,
    TrainingGoal,
    TrainingKnowledge,
    TrainingSessionSummary,
)

# Load change (%) across the window before a trend is called
PROGRESSION_THRESHOLD_PCT = 5.0
MAX_PATTERNS = 20


class TrainingCollector(BaseCollector):
    domain = Domain.TRAINING

    async def _collect(self, user_id: str) -> TrainingKnowledge:
        sessions, load_rows, preferences, records, goals = await asyncio.gather(
            self._recent_sessions(user_id),
            self._optional(self._load_history(user_id), [], "load history"),
            self._optional(self._exercise_preferences(user_id), [], "exercise preferences"),
            self._optional(self._personal_records(user_id), [], "personal records"),
            self._optional(self._active_goals(user_id), [], "training goals"),
        )

        return TrainingKnowledge(
            recent_sessions=sessions,
            current_loads=current_loads(load_rows),
            exercise_preferences=preferences,
            progression_patterns=self._progression_patterns(load_rows),
            avg_rpe=average_rpe(sessions),
            weekly_volume=self._weekly_volume(sessions),
            last_session_date=sessions[0].date if sessions else None,
            personal_records=records,
            active_goals=goals,
            has_data=len(sessions) > 0,
        )

    async def _recent_sessions(self, user_id: str) -> List[TrainingSessionSummary]:
        rows = await self.store.fetch_rows(
            "training_sessions",
            user_id,
            since=self.since(settings.TRAINING_LOOKBACK_DAYS),
            since_column="created_at",
            order_by="created_at",
            limit=settings.TRAINING_SESSION_LIMIT,
        )
        return [session_from_row(row) for row in rows]

    async def _load_history(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.store.fetch_rows(
            "training_exercise_load_history",
            user_id,
            since=self.since(settings.TRAINING_LOOKBACK_DAYS),
            since_column="performed_at",
            order_by="performed_at",
            limit=settings.TRAINING_LOAD_HISTORY_LIMIT,
        )

    async def _exercise_preferences(self, user_id: str) -> List[ExercisePreference]:
        rows = await self.store.fetch_rows(
            "user_exercise_preferences",
            user_id,
            order_by="preference_score",
            limit=settings.TRAINING_PREFERENCE_LIMIT,
        )
        return [
            ExercisePreference(
                exercise_name=row.get("exercise_name") or "Unknown",
                enjoyment_score=to_float(row.get("avg_enjoyment_rating"), 3),
                frequency_last_30_days=to_int(row.get("times_completed"), 0),
                avg_load=to_float(row.get("avg_load"), 0),
            )
            for row in rows
        ]

    async def _personal_records(self, user_id: str) -> List[PersonalRecord]:
        rows = await self.store.fetch_rows(
            "training_personal_records",
            user_id,
            order_by="achieved_at",
            limit=settings.TRAINING_RECORD_LIMIT,
        )
        return [
            PersonalRecord(
                exercise_name=row["exercise_name"],
                load=to_float(row.get("value"), 0),
                reps=1 if row.get("record_type") == "1RM" else to_int(row.get("reps"), 0),
                date=parse_timestamp(row.get("achieved_at")),
                discipline=row.get("discipline") or "force",
            )
            for row in rows
        ]

    async def _active_goals(self, user_id: str) -> List[TrainingGoal]:
        rows = await self.store.fetch_rows(
            "training_goals",
            user_id,
            filters={"is_active": True},
            order_by="created_at",
            limit=settings.TRAINING_GOAL_LIMIT,
        )
        return [
            TrainingGoal(
                id=str(row["id"]),
                title=row.get("name") or row.get("description") or "Goal",
                target_value=to_float(row.get("target_value")),
                current_value=to_float(row.get("current_value")),
                unit=row.get("unit") or "",
                deadline=parse_timestamp(row.get("deadline")),
                is_active=bool(row.get("is_active", True)),
            )
            for row in rows
        ]

    def _weekly_volume(self, sessions: List[TrainingSessionSummary]) -> int:
        """Exercises performed in completed sessions over the last 7 days."""
        week_ago = self.clock() - timedelta(days=7)
        return sum(
            s.exercise_count for s in sessions
            if s.completed and s.date and s.date >= week_ago
        )

    def _progression_patterns(self, load_rows: List[Dict[str, Any]]) -> List[ProgressionPattern]:
        """Load trend per exercise, oldest vs newest logged load in the window."""
        history: Dict[str, List[tuple]] = defaultdict(list)
        for row in load_rows:
            load = load_value(row.get("load_completed"))
            performed_at = parse_timestamp(row.get("performed_at"))
            if load > 0 and performed_at is not None:
                history[row["exercise_name"]].append((performed_at, load))

        midpoint = self.clock() - timedelta(days=settings.TRAINING_LOOKBACK_DAYS / 2)
        patterns = []
        for name, points in history.items():
            points.sort(key=lambda p: p[0])
            first, last = points[0][1], points[-1][1]
            change = (last - first) / first * 100 if len(points) > 1 else 0.0
            if change > PROGRESSION_THRESHOLD_PCT:
                trend = "increasing"
            elif change < -PROGRESSION_THRESHOLD_PCT:
                trend = "decreasing"
            else:
                trend = "stable"

            older = sum(1 for p in points if p[0] < midpoint)
            newer = len(points) - older
            volume_change = (newer - older) / older * 100 if older else 0.0

            patterns.append(ProgressionPattern(
                exercise_name=name,
                trend=trend,
                load_progression=round(change, 1),
                volume_progression=round(volume_change, 1),
            ))

        patterns.sort(key=lambda p: abs(p.load_progression), reverse=True)
        return patterns[:MAX_PATTERNS]


def session_from_row(row: Dict[str, Any]) -> TrainingSessionSummary:
    prescription = as_dict(row.get("prescription"))
    feedback = as_dict(row.get("feedback"))

    exercises: List[ExerciseDetail] = []
    exercise_rows = as_list(prescription.get("exercises"))
    if exercise_rows:
        exercises = [exercise_from_prescription(ex) for ex in exercise_rows]
        exercise_count = len(exercises)
    else:
        # Endurance sessions are prescribed as blocks
        exercise_count = len(as_list(prescription.get("blocks")))

    return TrainingSessionSummary(
        session_id=str(row["id"]),
        date=parse_timestamp(row.get("created_at")),
        discipline=row.get("discipline") or "force",
        exercise_count=exercise_count,
        duration_min=to_float(row.get("duration_actual_min"), 0),
        completed=row.get("status") == "completed" or bool(row.get("completed_at")),
        avg_rpe=to_float(feedback.get("avg_rpe")),
        exercises=exercises,
        session_name=prescription.get("sessionName"),
        expected_rpe=to_float(prescription.get("expectedRpe")),
    )


def exercise_from_prescription(ex: Dict[str, Any]) -> ExerciseDetail:
    ex = as_dict(ex)
    return ExerciseDetail(
        id=str(ex.get("id") or ""),
        name=ex.get("name") or "Unknown",
        sets=to_int(ex.get("sets"), 0),
        reps=ex.get("reps") or 0,
        load=ex.get("load"),
        rest=to_int(ex.get("rest"), 0),
        muscle_groups=as_list(ex.get("muscleGroups")),
        coach_tips=as_list(ex.get("coachTips")),
        execution_cues=as_list(ex.get("executionCues")),
    )


def load_value(raw: Any) -> float:
    """A logged load is a number or a per-set list; lists are averaged."""
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    values = [v for v in as_list(raw) if isinstance(v, (int, float)) and not isinstance(v, bool)]
    if values:
        return sum(values) / len(values)
    return to_float(raw, 0.0) if isinstance(raw, str) else 0.0


def current_loads(load_rows: List[Dict[str, Any]]) -> Dict[str, float]:
    """Most recent non-zero load per exercise (rows arrive newest first)."""
    loads: Dict[str, float] = {}
    for row in load_rows:
        name = row.get("exercise_name")
        if not name or name in loads:
            continue
        value = load_value(row.get("load_completed"))
        if value > 0:
            loads[name] = round(value, 1)
    return loads


def average_rpe(sessions: List[TrainingSessionSummary]) -> float:
    rpes: List[Optional[float]] = [s.avg_rpe for s in sessions if s.avg_rpe is not None]
    if not rpes:
        return 0.0
    return round(statistics.mean(rpes), 1)

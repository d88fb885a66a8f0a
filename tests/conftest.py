"""
Pytest configuration and fixtures

No test touches a real database. Collectors and the aggregator run against
FakeDataStore (in-memory rows per table), and time is pinned with FakeClock
so lookback windows, TTLs and staleness are deterministic.
SqlDataStore has its own tests against SQLite.
"""
import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from coach_brain.core.cache import CacheManager
from coach_brain.core.clock import parse_timestamp
from coach_brain.core.database import DataStore
from coach_brain.core.exceptions import DataStoreError

# Wednesday afternoon
NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)
USER_ID = "u1"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeDataStore(DataStore):
    """
    In-memory DataStore with the same query semantics as SqlDataStore.

    - fail(table) makes every read of that table raise DataStoreError
    - slow(table, seconds) delays reads of that table
    - calls counts reads per table
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.failures: Dict[str, BaseException] = {}
        self.latency: Dict[str, float] = {}
        self.calls: Counter = Counter()

    def add(self, table: str, **row) -> Dict[str, Any]:
        row.setdefault("user_id", USER_ID)
        self.tables.setdefault(table, []).append(row)
        return row

    def fail(self, table: str, error: Optional[BaseException] = None) -> None:
        self.failures[table] = error or ConnectionError(f"network error reading {table}")

    def slow(self, table: str, seconds: float) -> None:
        self.latency[table] = seconds

    async def fetch_rows(
        self,
        table: str,
        user_id: str,
        *,
        columns=None,
        filters=None,
        since=None,
        since_column="created_at",
        until=None,
        order_by=None,
        descending=True,
        limit=None,
    ):
        self.calls[table] += 1
        if table in self.latency:
            await asyncio.sleep(self.latency[table])
        if table in self.failures:
            raise DataStoreError(table, self.failures[table])

        rows = [row for row in self.tables.get(table, []) if row.get("user_id") == user_id]
        for name, value in (filters or {}).items():
            rows = [row for row in rows if row.get(name) == value]
        if since is not None:
            rows = [row for row in rows if _ts(row.get(since_column)) and _ts(row.get(since_column)) >= since]
        if until is not None:
            rows = [row for row in rows if _ts(row.get(since_column)) and _ts(row.get(since_column)) < until]
        if order_by:
            rows.sort(key=lambda row: _sort_key(row.get(order_by)), reverse=descending)
        if limit:
            rows = rows[:limit]
        if columns:
            rows = [{name: row.get(name) for name in columns} for row in rows]
        return [dict(row) for row in rows]


def _ts(value: Any) -> Optional[datetime]:
    return parse_timestamp(value)


def _sort_key(value: Any):
    parsed = parse_timestamp(value) if isinstance(value, str) else None
    if parsed is not None:
        return (1, parsed.timestamp())
    if isinstance(value, datetime):
        return (1, parse_timestamp(value).timestamp())
    if isinstance(value, (int, float)):
        return (1, float(value))
    return (0, 0.0)


def iso(delta: timedelta = timedelta(0), base: datetime = NOW) -> str:
    """ISO timestamp `delta` before NOW, as the BaaS returns it."""
    return (base - delta).isoformat().replace("+00:00", "Z")


def seed_user(store: FakeDataStore, user_id: str = USER_ID) -> FakeDataStore:
    """One fully-populated user across every domain."""
    def add(table, **row):
        row["user_id"] = user_id
        return store.add(table, **row)

    add(
        "user_profile",
        id="p1",
        display_name="Alex",
        full_name="Alex Martin",
        email="alex@example.com",
        birthdate="1990-06-15",
        sex="male",
        height_cm=180,
        weight_kg=81,
        target_weight_kg=77,
        body_fat_perc=18,
        objective="muscle_gain",
        activity_level="moderate",
        preferred_disciplines=["force"],
        level="intermediate",
        language="en",
        has_completed_body_scan=True,
        created_at=iso(timedelta(days=400)),
    )

    # Training
    add(
        "training_sessions",
        id="ts1",
        created_at=iso(timedelta(days=1, hours=7)),  # Tue 08:00
        discipline="force",
        prescription={
            "sessionName": "Upper A",
            "expectedRpe": 7,
            "exercises": [
                {"id": "e1", "name": "Bench Press", "sets": 4, "reps": "8", "load": 80, "rest": 120,
                 "muscleGroups": ["chest", "triceps"], "coachTips": ["Scapulae retracted"]},
                {"id": "e2", "name": "Barbell Row", "sets": 3, "reps": 10, "load": 60, "rest": 90},
            ],
        },
        duration_actual_min=55,
        status="completed",
        completed_at=iso(timedelta(days=1, hours=6)),
        feedback={"avg_rpe": 8},
    )
    add(
        "training_sessions",
        id="ts2",
        created_at=iso(timedelta(days=3, hours=7)),  # Sun 08:00
        discipline="force",
        prescription='{"sessionName": "Lower A", "exercises": [{"name": "Squat"}, {"name": "RDL"}, {"name": "Lunge"}]}',
        duration_actual_min=65,
        status="completed",
        completed_at=iso(timedelta(days=3, hours=6)),
        feedback={"avg_rpe": 7},
    )
    add(
        "training_sessions",
        id="ts3",
        created_at=iso(timedelta(days=10, hours=-3)),  # Sun 18:00
        discipline="endurance",
        prescription={"blocks": [{"type": "warmup"}, {"type": "intervals"}, {"type": "cooldown"}]},
        duration_actual_min=None,
        status="planned",
    )
    add("training_exercise_load_history", exercise_name="Bench Press", load_completed=80, performed_at=iso(timedelta(days=1)))
    add("training_exercise_load_history", exercise_name="Bench Press", load_completed=[70, 72, 74], performed_at=iso(timedelta(days=20)))
    add("training_exercise_load_history", exercise_name="Squat", load_completed=100, performed_at=iso(timedelta(days=3)))
    add("training_exercise_load_history", exercise_name="Squat", load_completed=100, performed_at=iso(timedelta(days=17)))
    add("user_exercise_preferences", exercise_name="Bench Press", avg_enjoyment_rating=4.5,
        times_completed=6, avg_load=75, preference_score=0.9)
    add("training_personal_records", exercise_name="Bench Press", value=90, record_type="1RM",
        achieved_at=iso(timedelta(days=5)), discipline="force")
    add("training_goals", id="g1", name="Bench 100kg", target_value=100, current_value=80, unit="kg",
        is_active=True, created_at=iso(timedelta(days=30)))
    add("training_goals", id="g2", name="Old goal", target_value=10, current_value=10, unit="reps",
        is_active=False, created_at=iso(timedelta(days=60)))

    # Equipment
    add("training_locations", id="loc1", name="Home", type="home", equipment=["dumbbells", "bench"],
        is_default=False, created_at=iso(timedelta(days=50)))
    add("training_locations", id="loc2", name="City Gym", type="gym", equipment='["barbell", "bench"]',
        is_default=True, created_at=iso(timedelta(days=20)))
    add("training_location_equipment_detections", location_id="loc1", equipment_name="kettlebell",
        created_at=iso(timedelta(days=2)))

    # Nutrition
    add("meals", id="m1", meal_name="Oats", consumed_at=iso(timedelta(hours=7)), total_kcal=500,
        protein_g=25, carbs_g=70, fat_g=10, meal_type="breakfast")
    add("meals", id="m2", meal_name="Chicken bowl", consumed_at=iso(timedelta(hours=2)), total_kcal=700,
        protein_g=45, carbs_g=60, fat_g=20, meal_type="lunch")
    add("meals", id="m3", meal_name="Salmon", consumed_at=iso(timedelta(days=1, hours=-3)), total_kcal=800,
        protein_g=50, carbs_g=40, fat_g=30, meal_type="dinner")
    add("meal_plans", id="mp1", is_active=True, week_start="2025-03-10", week_end="2025-03-16",
        meals=[{"day": 1}, {"day": 2}, {"day": 3}], created_at=iso(timedelta(days=2)))
    add("user_preferences", id="pref1", dietary_preferences=["high-protein"], dietary_restrictions=["lactose-free"])

    # Fasting
    add("fasting_sessions", id="f1", start_time=iso(timedelta(hours=10)), end_time=None, status="in_progress",
        target_hours=16, protocol="16:8")
    add("fasting_sessions", id="f2", start_time=iso(timedelta(days=2)), end_time=iso(timedelta(days=2, hours=-16)),
        status="completed", actual_duration_hours=16, target_hours=16, protocol="16:8", quality_rating=4)
    add("fasting_sessions", id="f3", start_time=iso(timedelta(days=4)), end_time=iso(timedelta(days=4, hours=-18)),
        status="completed", actual_duration_hours=18, target_hours=18, protocol="18:6")

    # Body scans
    add("body_scans", id="b1", created_at=iso(timedelta(days=5)), scan_type="body",
        weight_kg=81, body_fat_perc=18, muscle_mass_kg=37)
    add("body_scans", id="b2", created_at=iso(timedelta(days=60)), scan_type="body",
        measurements={"weight": 83, "body_fat": 20.5, "muscle_mass": 36})

    # Energy
    add("activities", id="a1", type="run", timestamp=iso(timedelta(days=2)), duration_min=40,
        calories_est=450, intensity="high", hr_avg=150, hr_max=182, hr_resting=52, hrv_avg=70, source="garmin")
    add("activities", id="a2", type="cycling", timestamp=iso(timedelta(days=12)), duration_min=60,
        calories_est=500, intensity="medium", hr_avg=130, hr_max=165, hrv_avg=60,
        vo2max_estimated=52, source="garmin")
    add("connected_devices", id="d1", provider="garmin", display_name="Garmin Forerunner",
        status="connected", created_at=iso(timedelta(days=90)))
    add("connected_devices", id="d2", provider="whoop", status="disconnected", created_at=iso(timedelta(days=90)))

    # Perinatal
    add("breastfeeding_tracking", id="bf1", is_breastfeeding=False, updated_at=iso(timedelta(days=30)))

    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeDataStore()


@pytest.fixture
def seeded_store():
    return seed_user(FakeDataStore())


@pytest.fixture
def cache(clock):
    return CacheManager(clock=clock)

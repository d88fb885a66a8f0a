"""
Tests for the domain collectors and the profile loader.

Every collector runs against the seeded FakeDataStore with the clock pinned
to Wednesday 2025-03-12 15:00 UTC.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from coach_brain.core.domains import Domain
from coach_brain.core.exceptions import DataStoreError, ProfileLoadError
from coach_brain.services.knowledge.collectors import COLLECTOR_CLASSES, build_collectors
from coach_brain.services.knowledge.collectors.base import as_dict, as_list, to_float, to_int
from coach_brain.services.knowledge.collectors.body_scan import BodyScanCollector, measurements_from_row
from coach_brain.services.knowledge.collectors.energy import EnergyCollector
from coach_brain.services.knowledge.collectors.equipment import EquipmentCollector
from coach_brain.services.knowledge.collectors.fasting import FastingCollector
from coach_brain.services.knowledge.collectors.nutrition import NutritionCollector
from coach_brain.services.knowledge.collectors.perinatal import PerinatalCollector, nutritional_needs
from coach_brain.services.knowledge.collectors.temporal import TemporalCollector, time_of_day
from coach_brain.services.knowledge.collectors.today import TodayCollector
from coach_brain.services.knowledge.collectors.training import TrainingCollector, load_value
from coach_brain.services.knowledge.completeness import completeness_score
from coach_brain.services.knowledge.models import PerinatalKnowledge, TemporalKnowledge
from coach_brain.services.knowledge.profile import ProfileLoader, calculate_age, profile_from_row

from tests.conftest import NOW, FakeClock, iso


# ---------------------------------------------------------------------------
# Registry / helpers
# ---------------------------------------------------------------------------

class TestRegistry:

    def test_one_collector_per_domain(self, store, clock):
        collectors = build_collectors(store, clock)
        assert set(collectors) == set(Domain)
        for domain, collector in collectors.items():
            assert collector.domain is domain
            assert collector.store is store
        assert set(COLLECTOR_CLASSES) == set(Domain)


class TestRowHelpers:

    def test_json_columns_accept_strings(self):
        assert as_dict('{"a": 1}') == {"a": 1}
        assert as_dict("not json") == {}
        assert as_list('["x", "y"]') == ["x", "y"]
        assert as_list("plain") == ["plain"]
        assert as_list(None) == []

    def test_numeric_coercion(self):
        assert to_float("4.5") == 4.5
        assert to_float(None, 3) == 3
        assert to_float(True) is None
        assert to_int("7.9") == 7

    @pytest.mark.parametrize("raw,expected", [
        (80, 80.0), ([70, 72, 74], 72.0), ("[60, 70]", 65.0), ("55", 55.0), (None, 0.0), (True, 0.0),
    ])
    def test_load_value(self, raw, expected):
        assert load_value(raw) == expected


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

class TestProfile:

    def test_calculate_age_before_and_after_birthday(self):
        born = date(1990, 6, 15)
        assert calculate_age(born, date(2025, 6, 14)) == 34
        assert calculate_age(born, date(2025, 6, 15)) == 35
        assert calculate_age(None) is None

    def test_profile_from_row(self, seeded_store):
        row = seeded_store.tables["user_profile"][0]
        profile = profile_from_row("u1", row, today=date(2025, 3, 12))
        assert profile.age == 34
        assert profile.display_name == "Alex"
        assert profile.objective == "muscle_gain"
        assert profile.preferred_disciplines == ["force"]
        assert profile.bmi() == 25.0
        assert profile.created_at == NOW - timedelta(days=400)

    def test_age_column_used_without_birthdate(self):
        profile = profile_from_row("u1", {"age": "41"})
        assert profile.age == 41

    @pytest.mark.asyncio
    async def test_load_returns_raw_row(self, seeded_store):
        profile, raw = await ProfileLoader(seeded_store).load("u1")
        assert profile.user_id == "u1"
        assert raw["id"] == "p1"

    @pytest.mark.asyncio
    async def test_missing_profile_is_default(self, store):
        profile, raw = await ProfileLoader(store).load("nobody")
        assert raw is None
        assert profile.user_id == "nobody"
        assert profile.display_name is None

    @pytest.mark.asyncio
    async def test_read_failure_raises_profile_load_error(self, seeded_store):
        seeded_store.fail("user_profile")
        with pytest.raises(ProfileLoadError) as exc_info:
            await ProfileLoader(seeded_store).load("u1")
        assert exc_info.value.user_id == "u1"
        assert isinstance(exc_info.value.cause, DataStoreError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("now,age", [
        (datetime(2025, 6, 14, 23, 30, tzinfo=timezone.utc), 34),
        (datetime(2025, 6, 15, 0, 30, tzinfo=timezone.utc), 35),
    ])
    async def test_age_follows_the_injected_utc_clock(self, seeded_store, now, age):
        profile, _ = await ProfileLoader(seeded_store, clock=FakeClock(now)).load("u1")
        assert profile.age == age


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

class TestTrainingCollector:

    @pytest.mark.asyncio
    async def test_collects_seeded_user(self, seeded_store, clock):
        training = await TrainingCollector(seeded_store, clock=clock).collect("u1")

        assert [s.session_id for s in training.recent_sessions] == ["ts1", "ts2", "ts3"]
        first, second, third = training.recent_sessions
        assert first.exercise_count == 2
        assert first.completed is True
        assert first.session_name == "Upper A"
        assert first.expected_rpe == 7.0
        assert first.exercises[0].muscle_groups == ["chest", "triceps"]
        assert second.exercise_count == 3  # prescription stored as a JSON string
        assert third.exercise_count == 3  # endurance blocks
        assert third.completed is False

        assert training.avg_rpe == 7.5
        assert training.weekly_volume == 5
        assert training.last_session_date == first.date
        assert training.current_loads == {"Bench Press": 80.0, "Squat": 100.0}
        assert training.has_data is True
        assert completeness_score(training) == 100

    @pytest.mark.asyncio
    async def test_progression_patterns(self, seeded_store, clock):
        training = await TrainingCollector(seeded_store, clock=clock).collect("u1")
        bench, squat = training.progression_patterns
        assert (bench.exercise_name, bench.trend, bench.load_progression) == ("Bench Press", "increasing", 11.1)
        assert (squat.exercise_name, squat.trend, squat.load_progression) == ("Squat", "stable", 0.0)

    @pytest.mark.asyncio
    async def test_records_preferences_and_active_goals(self, seeded_store, clock):
        training = await TrainingCollector(seeded_store, clock=clock).collect("u1")
        assert len(training.exercise_preferences) == 1
        assert training.exercise_preferences[0].enjoyment_score == 4.5
        assert training.personal_records[0].load == 90.0
        assert training.personal_records[0].reps == 1
        assert [g.id for g in training.active_goals] == ["g1"]
        assert training.active_goals[0].progress_percent() == 80

    @pytest.mark.asyncio
    async def test_secondary_query_failure_degrades(self, seeded_store, clock):
        seeded_store.fail("user_exercise_preferences")
        seeded_store.fail("training_goals")
        training = await TrainingCollector(seeded_store, clock=clock).collect("u1")
        assert training.exercise_preferences == []
        assert training.active_goals == []
        assert len(training.recent_sessions) == 3

    @pytest.mark.asyncio
    async def test_primary_query_failure_raises(self, seeded_store, clock):
        seeded_store.fail("training_sessions")
        with pytest.raises(DataStoreError):
            await TrainingCollector(seeded_store, clock=clock).collect("u1")

    @pytest.mark.asyncio
    async def test_lookback_window_excludes_old_sessions(self, store, clock):
        store.add("training_sessions", id="old", created_at=iso(timedelta(days=45)), status="completed")
        training = await TrainingCollector(store, clock=clock).collect("u1")
        assert training.recent_sessions == []
        assert training.has_data is False
        assert completeness_score(training) == 0

    @pytest.mark.asyncio
    async def test_other_users_rows_are_invisible(self, seeded_store, clock):
        training = await TrainingCollector(seeded_store, clock=clock).collect("u2")
        assert training.recent_sessions == []


# ---------------------------------------------------------------------------
# Equipment / Nutrition / Fasting
# ---------------------------------------------------------------------------

class TestEquipmentCollector:

    @pytest.mark.asyncio
    async def test_locations_merge_detections(self, seeded_store, clock):
        equipment = await EquipmentCollector(seeded_store, clock=clock).collect("u1")
        assert [loc.id for loc in equipment.locations] == ["loc2", "loc1"]
        assert equipment.default_location_id == "loc2"
        assert equipment.default_location().name == "City Gym"
        home = equipment.locations[1]
        assert home.equipment == ["dumbbells", "bench", "kettlebell"]
        assert equipment.available_equipment == ["barbell", "bench", "dumbbells", "kettlebell"]
        assert equipment.last_scan_date == NOW - timedelta(days=2)
        assert completeness_score(equipment) == 100

    @pytest.mark.asyncio
    async def test_first_location_is_default_when_none_flagged(self, store, clock):
        store.add("training_locations", id="a", name="Park", created_at=iso(timedelta(days=1)))
        store.add("training_locations", id="b", name="Garage", created_at=iso(timedelta(days=5)))
        equipment = await EquipmentCollector(store, clock=clock).collect("u1")
        assert equipment.default_location_id == "a"


class TestNutritionCollector:

    @pytest.mark.asyncio
    async def test_collects_seeded_user(self, seeded_store, clock):
        nutrition = await NutritionCollector(seeded_store, clock=clock).collect("u1")
        assert [m.id for m in nutrition.recent_meals] == ["m2", "m1", "m3"]
        assert nutrition.average_calories == 1000.0
        assert nutrition.average_protein == 60.0
        assert nutrition.scan_frequency == 0.7
        assert nutrition.meal_plan.meals_planned == 3
        assert nutrition.dietary_preferences == ["high-protein", "lactose-free"]
        assert nutrition.last_scan_date == NOW - timedelta(hours=2)
        assert completeness_score(nutrition) == 100

    @pytest.mark.asyncio
    async def test_missing_plan_table_degrades(self, seeded_store, clock):
        seeded_store.fail("meal_plans")
        nutrition = await NutritionCollector(seeded_store, clock=clock).collect("u1")
        assert nutrition.meal_plan is None
        assert len(nutrition.recent_meals) == 3


class TestFastingCollector:

    @pytest.mark.asyncio
    async def test_current_fast_and_history(self, seeded_store, clock):
        fasting = await FastingCollector(seeded_store, clock=clock).collect("u1")
        assert fasting.current_session.id == "f1"
        assert fasting.current_session.actual_duration == 10.0
        assert fasting.current_session.target_duration == 16.0
        assert fasting.total_sessions_completed == 2
        assert fasting.average_fasting_duration == 17.0
        assert fasting.preferred_protocol == "16:8"
        assert completeness_score(fasting) == 100

    @pytest.mark.asyncio
    async def test_running_fast_duration_follows_the_clock(self, seeded_store, clock):
        clock.advance(hours=2)
        fasting = await FastingCollector(seeded_store, clock=clock).collect("u1")
        assert fasting.current_session.actual_duration == 12.0


# ---------------------------------------------------------------------------
# Body scan / Energy
# ---------------------------------------------------------------------------

class TestBodyScanCollector:

    @pytest.mark.asyncio
    async def test_latest_measurements_and_trend(self, seeded_store, clock):
        scans = await BodyScanCollector(seeded_store, clock=clock).collect("u1")
        assert [s.id for s in scans.recent_scans] == ["b1", "b2"]
        latest = scans.latest_measurements
        assert (latest.weight, latest.body_fat, latest.muscle_mass) == (81.0, 18.0, 37.0)
        assert scans.recent_scans[1].measurements.body_fat == 20.5
        assert scans.progression_trend == "improving"
        assert completeness_score(scans) == 100

    @pytest.mark.asyncio
    async def test_single_scan_has_no_trend(self, store, clock):
        store.add("body_scans", id="b1", created_at=iso(timedelta(days=1)), weight_kg=70)
        scans = await BodyScanCollector(store, clock=clock).collect("u1")
        assert scans.progression_trend is None
        assert scans.has_data is True

    def test_nested_measurements_win_over_flat_columns(self):
        measurements = measurements_from_row({"measurements": '{"weight": 75}', "weight_kg": 80, "waist_cm": 82})
        assert measurements.weight == 75.0
        assert measurements.waist == 82.0


class TestEnergyCollector:

    @pytest.mark.asyncio
    async def test_collects_seeded_user(self, seeded_store, clock):
        energy = await EnergyCollector(seeded_store, clock=clock).collect("u1")
        assert [a.id for a in energy.recent_activities] == ["a1", "a2"]
        assert energy.connected_devices == ["Garmin Forerunner"]
        assert energy.has_wearable_connected is True
        assert energy.training_load_7d == 120.0
        assert energy.fatigue_score == 100
        assert energy.recovery_score == 10
        bio = energy.biometrics
        assert (bio.hr_resting, bio.hr_max, bio.hr_avg, bio.hrv_avg, bio.vo2max_estimated) == (52, 182, 140, 70, 52)
        assert completeness_score(energy) == 100

    @pytest.mark.asyncio
    async def test_no_activities_means_no_scores(self, store, clock):
        energy = await EnergyCollector(store, clock=clock).collect("u1")
        assert energy.fatigue_score is None
        assert energy.recovery_score is None
        assert energy.has_data is False
        assert completeness_score(energy) == 0


# ---------------------------------------------------------------------------
# Temporal / Today / Perinatal
# ---------------------------------------------------------------------------

class TestTemporalCollector:

    @pytest.mark.asyncio
    async def test_collects_seeded_user(self, seeded_store, clock):
        temporal = await TemporalCollector(seeded_store, clock=clock).collect("u1")
        patterns = [(p.weekday, p.session_count, p.preferred_hour) for p in temporal.training_patterns]
        assert patterns == [("sunday", 2, 8), ("tuesday", 1, 8)]
        assert temporal.optimal_training_hours == [8, 18]
        assert temporal.preferred_rest_days == ["monday", "wednesday", "thursday", "friday", "saturday"]
        assert temporal.average_rest_days_between_sessions == 3.5
        assert temporal.weekly_frequency == 0.2
        assert temporal.preferred_time_of_day == "morning"
        assert temporal.average_session_duration == 60
        assert temporal.consistency_score == 8
        assert completeness_score(temporal) == 100

    @pytest.mark.asyncio
    async def test_no_sessions_is_the_empty_value(self, store, clock):
        assert await TemporalCollector(store, clock=clock).collect("u1") == TemporalKnowledge()

    @pytest.mark.parametrize("hour,bucket", [
        (5, "morning"), (11, "morning"), (12, "afternoon"), (17, "evening"), (22, "night"), (3, "night"),
    ])
    def test_time_of_day(self, hour, bucket):
        assert time_of_day(hour) == bucket


class TestTodayCollector:

    @pytest.mark.asyncio
    async def test_collects_since_midnight(self, seeded_store, clock):
        today = await TodayCollector(seeded_store, clock=clock).collect("u1")
        assert sorted(m.id for m in today.meals) == ["m1", "m2"]
        assert sum(m.calories for m in today.meals) == 1200
        assert today.training_sessions == []
        assert today.body_scans == []
        assert today.fasting_session.current_duration == 10.0
        assert (today.has_nutrition, today.has_fasting, today.has_training) == (True, True, False)
        assert today.total_activities == 3
        assert completeness_score(today) == 50

    @pytest.mark.asyncio
    async def test_session_started_today_counts(self, store, clock):
        store.add("training_sessions", id="t", created_at=iso(timedelta(hours=1)), status="in_progress",
                  prescription={"exercises": [{"name": "Squat"}]})
        store.add("training_sessions", id="y", created_at=iso(timedelta(hours=16)), status="completed")
        today = await TodayCollector(store, clock=clock).collect("u1")
        assert [s.id for s in today.training_sessions] == ["t"]
        assert today.training_sessions[0].exercise_count == 1
        assert today.total_activities == 1

    def test_midnight_is_utc_day_start(self, store, clock):
        assert TodayCollector(store, clock=clock).midnight() == datetime(2025, 3, 12, tzinfo=timezone.utc)


class TestPerinatalCollector:

    @pytest.mark.asyncio
    async def test_not_breastfeeding(self, seeded_store, clock):
        perinatal = await PerinatalCollector(seeded_store, clock=clock).collect("u1")
        assert perinatal.is_breastfeeding is False
        assert perinatal.has_data is True
        assert perinatal.nutritional_needs.extra_calories == 0
        assert completeness_score(perinatal) == 0

    @pytest.mark.asyncio
    async def test_no_tracking_row(self, store, clock):
        assert await PerinatalCollector(store, clock=clock).collect("u1") == PerinatalKnowledge()

    @pytest.mark.asyncio
    async def test_breastfeeding_row(self, store, clock):
        store.add("breastfeeding_tracking", id="bf", is_breastfeeding=True, breastfeeding_type="exclusive",
                  baby_age_months=3, start_date=iso(timedelta(days=95)), updated_at=iso(timedelta(days=1)))
        perinatal = await PerinatalCollector(store, clock=clock).collect("u1")
        assert perinatal.is_breastfeeding is True
        assert perinatal.duration_months == 3
        assert perinatal.nutritional_needs.extra_calories == 500
        assert perinatal.nutritional_needs.extra_protein == 25
        assert perinatal.recommendations.avoid_foods == ["alcohol"]

    @pytest.mark.parametrize("kind,months,calories", [
        ("exclusive", 3, 500), ("exclusive", 8, 425), ("mixed", None, 350), ("weaning", 12, 212), (None, 2, 350),
    ])
    def test_extra_calories(self, kind, months, calories):
        assert nutritional_needs(kind, months).extra_calories == calories

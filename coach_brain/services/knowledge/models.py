"""
User Knowledge Models

One dataclass per knowledge domain plus the aggregate UserKnowledge snapshot.

Every domain dataclass is fully defaulted: calling the class with no
arguments yields the documented "empty" value the aggregator substitutes
when a collector fails. Defaults double as "no data" sentinels, which is
why completeness_fields() reports numeric zeros as missing.
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from coach_brain.core.domains import Domain


def serialize(value: Any) -> Any:
    """JSON-ready rendering of models: ISO timestamps, enum values, nested dataclasses."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {
            (k.value if isinstance(k, Enum) else str(k)): serialize(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def _nonzero(value: Optional[float]) -> Optional[float]:
    return value if value else None


class KnowledgeModel:
    """Mixin for every domain knowledge value."""

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)

    def completeness_fields(self) -> Dict[str, Any]:
        """Fields that count towards the completeness score."""
        raise NotImplementedError


# =============================================================================
# PROFILE
# =============================================================================

@dataclass
class ProfileKnowledge(KnowledgeModel):
    """Identity and physical attributes from user_profile."""
    user_id: str
    display_name: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None

    age: Optional[int] = None
    sex: Optional[str] = None
    birthdate: Optional[date] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    target_weight_kg: Optional[float] = None
    body_fat_perc: Optional[float] = None

    objectives: List[str] = field(default_factory=list)  # legacy free-form goals
    objective: Optional[str] = None  # fat_loss | recomp | muscle_gain
    activity_level: Optional[str] = None
    job_category: Optional[str] = None

    preferred_disciplines: List[str] = field(default_factory=list)
    default_discipline: Optional[str] = None
    level: Optional[str] = None
    equipment: List[str] = field(default_factory=list)

    country: Optional[str] = None
    language: Optional[str] = None
    preferred_language: Optional[str] = None

    has_completed_body_scan: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def bmi(self) -> Optional[float]:
        if not self.height_cm or not self.weight_kg:
            return None
        return round(self.weight_kg / (self.height_cm / 100) ** 2, 1)

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "age": self.age,
            "sex": self.sex,
            "height_cm": self.height_cm,
            "weight_kg": self.weight_kg,
            "objective": self.objective,
            "activity_level": self.activity_level,
            "preferred_disciplines": self.preferred_disciplines,
        }


# =============================================================================
# TRAINING
# =============================================================================

@dataclass
class ExerciseDetail:
    id: str = ""
    name: str = "Unknown"
    sets: int = 0
    reps: Any = 0  # int or a range string such as "8-10"
    load: Optional[Any] = None
    rest: int = 0
    muscle_groups: List[str] = field(default_factory=list)
    coach_tips: List[str] = field(default_factory=list)
    execution_cues: List[str] = field(default_factory=list)


@dataclass
class TrainingSessionSummary:
    session_id: str
    date: Optional[datetime]
    discipline: str = "force"
    exercise_count: int = 0
    duration_min: float = 0
    completed: bool = False
    avg_rpe: Optional[float] = None
    exercises: List[ExerciseDetail] = field(default_factory=list)
    session_name: Optional[str] = None
    expected_rpe: Optional[float] = None


@dataclass
class ExercisePreference:
    exercise_name: str
    enjoyment_score: float = 3
    frequency_last_30_days: int = 0
    avg_load: float = 0


@dataclass
class ProgressionPattern:
    exercise_name: str
    trend: str = "stable"  # increasing | stable | decreasing
    load_progression: float = 0  # % change across the window
    volume_progression: float = 0


@dataclass
class PersonalRecord:
    exercise_name: str
    load: float = 0
    reps: int = 0
    date: Optional[datetime] = None
    discipline: str = "force"


@dataclass
class TrainingGoal:
    id: str
    title: str
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: str = ""
    deadline: Optional[datetime] = None
    is_active: bool = True

    def progress_percent(self) -> int:
        if not self.current_value or not self.target_value:
            return 0
        return round(self.current_value / self.target_value * 100)


@dataclass
class TrainingKnowledge(KnowledgeModel):
    recent_sessions: List[TrainingSessionSummary] = field(default_factory=list)
    current_loads: Dict[str, float] = field(default_factory=dict)
    exercise_preferences: List[ExercisePreference] = field(default_factory=list)
    progression_patterns: List[ProgressionPattern] = field(default_factory=list)
    avg_rpe: float = 0.0
    weekly_volume: int = 0
    last_session_date: Optional[datetime] = None
    personal_records: List[PersonalRecord] = field(default_factory=list)
    active_goals: List[TrainingGoal] = field(default_factory=list)
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "recent_sessions": self.recent_sessions,
            "current_loads": self.current_loads,
            "exercise_preferences": self.exercise_preferences,
            "progression_patterns": self.progression_patterns,
            "avg_rpe": _nonzero(self.avg_rpe),
            "weekly_volume": _nonzero(self.weekly_volume),
            "last_session_date": self.last_session_date,
            "personal_records": self.personal_records,
            "active_goals": self.active_goals,
        }


# =============================================================================
# EQUIPMENT
# =============================================================================

@dataclass
class TrainingLocation:
    id: str
    name: str
    type: str = "other"  # home | gym | outdoor | other
    equipment: List[str] = field(default_factory=list)
    is_default: bool = False


@dataclass
class EquipmentKnowledge(KnowledgeModel):
    locations: List[TrainingLocation] = field(default_factory=list)
    available_equipment: List[str] = field(default_factory=list)
    default_location_id: Optional[str] = None
    last_scan_date: Optional[datetime] = None
    has_data: bool = False

    def default_location(self) -> Optional[TrainingLocation]:
        for location in self.locations:
            if location.id == self.default_location_id:
                return location
        return None

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "locations": self.locations,
            "available_equipment": self.available_equipment,
            "default_location_id": self.default_location_id,
            "last_scan_date": self.last_scan_date,
        }


# =============================================================================
# NUTRITION
# =============================================================================

@dataclass
class MealSummary:
    id: str
    name: str
    date: Optional[datetime] = None
    calories: float = 0
    protein: float = 0
    carbs: float = 0
    fats: float = 0
    meal_type: str = "other"


@dataclass
class MealPlanSummary:
    id: str
    week_start: Optional[datetime] = None
    week_end: Optional[datetime] = None
    is_active: bool = False
    meals_planned: int = 0


@dataclass
class NutritionKnowledge(KnowledgeModel):
    recent_meals: List[MealSummary] = field(default_factory=list)
    meal_plan: Optional[MealPlanSummary] = None
    scan_frequency: float = 0  # meals scanned per week
    last_scan_date: Optional[datetime] = None
    average_calories: float = 0
    average_protein: float = 0
    dietary_preferences: List[str] = field(default_factory=list)
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "recent_meals": self.recent_meals,
            "meal_plan": self.meal_plan,
            "scan_frequency": _nonzero(self.scan_frequency),
            "last_scan_date": self.last_scan_date,
            "average_calories": _nonzero(self.average_calories),
            "average_protein": _nonzero(self.average_protein),
            "dietary_preferences": self.dietary_preferences,
        }


# =============================================================================
# FASTING
# =============================================================================

@dataclass
class FastingSessionSummary:
    id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    target_duration: float = 0  # hours
    actual_duration: Optional[float] = None  # hours
    protocol: str = "custom"
    status: str = "completed"  # in_progress | completed | cancelled
    quality: Optional[float] = None


@dataclass
class FastingKnowledge(KnowledgeModel):
    recent_sessions: List[FastingSessionSummary] = field(default_factory=list)
    current_session: Optional[FastingSessionSummary] = None
    average_fasting_duration: float = 0  # hours
    total_sessions_completed: int = 0
    preferred_protocol: Optional[str] = None
    last_session_date: Optional[datetime] = None
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "recent_sessions": self.recent_sessions,
            "current_session": self.current_session,
            "average_fasting_duration": _nonzero(self.average_fasting_duration),
            "total_sessions_completed": _nonzero(self.total_sessions_completed),
            "preferred_protocol": self.preferred_protocol,
            "last_session_date": self.last_session_date,
        }


# =============================================================================
# BODY SCAN (body composition)
# =============================================================================

@dataclass
class BodyMeasurements:
    weight: Optional[float] = None
    body_fat: Optional[float] = None
    muscle_mass: Optional[float] = None
    waist: Optional[float] = None
    chest: Optional[float] = None
    arms: Optional[float] = None
    legs: Optional[float] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class BodyScanSummary:
    id: str
    scan_date: Optional[datetime] = None
    scan_type: str = "body"
    measurements: BodyMeasurements = field(default_factory=BodyMeasurements)


@dataclass
class BodyScanKnowledge(KnowledgeModel):
    recent_scans: List[BodyScanSummary] = field(default_factory=list)
    last_scan_date: Optional[datetime] = None
    latest_measurements: Optional[BodyMeasurements] = None
    progression_trend: Optional[str] = None  # improving | stable | declining
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "recent_scans": self.recent_scans,
            "last_scan_date": self.last_scan_date,
            "latest_measurements": self.latest_measurements,
            "progression_trend": self.progression_trend,
        }


# =============================================================================
# ENERGY (wearables and biometrics)
# =============================================================================

@dataclass
class EnergyActivity:
    id: str
    activity_type: str = "other"
    timestamp: Optional[datetime] = None
    duration_min: float = 0
    calories: float = 0
    intensity: Optional[str] = None
    hr_avg: Optional[float] = None
    hr_max: Optional[float] = None
    source: str = "manual"


@dataclass
class Biometrics:
    hr_resting: Optional[float] = None
    hr_max: Optional[float] = None
    hr_avg: Optional[float] = None
    hrv_avg: Optional[float] = None
    vo2max_estimated: Optional[float] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class EnergyKnowledge(KnowledgeModel):
    recent_activities: List[EnergyActivity] = field(default_factory=list)
    connected_devices: List[str] = field(default_factory=list)
    has_wearable_connected: bool = False
    biometrics: Biometrics = field(default_factory=Biometrics)
    recovery_score: Optional[float] = None  # 0-100
    fatigue_score: Optional[float] = None  # 0-100
    training_load_7d: float = 0
    last_activity_date: Optional[datetime] = None
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "recent_activities": self.recent_activities,
            "connected_devices": self.connected_devices,
            "biometrics": None if self.biometrics.is_empty() else self.biometrics,
            "recovery_score": self.recovery_score,
            "fatigue_score": self.fatigue_score,
            "training_load_7d": _nonzero(self.training_load_7d),
            "last_activity_date": self.last_activity_date,
        }


# =============================================================================
# TEMPORAL (when the user trains)
# =============================================================================

@dataclass
class TrainingPattern:
    weekday: str
    session_count: int = 0
    preferred_hour: Optional[int] = None


@dataclass
class TemporalKnowledge(KnowledgeModel):
    training_patterns: List[TrainingPattern] = field(default_factory=list)
    optimal_training_hours: List[int] = field(default_factory=list)
    preferred_rest_days: List[str] = field(default_factory=list)
    average_rest_days_between_sessions: float = 0
    weekly_frequency: float = 0
    preferred_time_of_day: Optional[str] = None  # morning | afternoon | evening | night
    average_session_duration: float = 0  # minutes
    consistency_score: float = 0  # 0-100
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "training_patterns": self.training_patterns,
            "optimal_training_hours": self.optimal_training_hours,
            "preferred_rest_days": self.preferred_rest_days,
            "average_rest_days_between_sessions": _nonzero(self.average_rest_days_between_sessions),
            "weekly_frequency": _nonzero(self.weekly_frequency),
            "preferred_time_of_day": self.preferred_time_of_day,
            "average_session_duration": _nonzero(self.average_session_duration),
            "consistency_score": _nonzero(self.consistency_score),
        }


# =============================================================================
# TODAY
# =============================================================================

@dataclass
class TodayTrainingSession:
    id: str
    discipline: str = "force"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: str = "planned"  # planned | in_progress | completed
    exercise_count: int = 0


@dataclass
class TodayMeal:
    id: str
    name: str = "Meal"
    meal_type: str = "other"
    consumed_at: Optional[datetime] = None
    calories: float = 0
    protein: float = 0


@dataclass
class TodayFastingSession:
    id: str
    start_time: Optional[datetime] = None
    target_duration: float = 0  # hours
    current_duration: float = 0  # hours
    status: str = "in_progress"


@dataclass
class TodayBodyScan:
    id: str
    scan_type: str = "body"
    scan_time: Optional[datetime] = None


@dataclass
class TodayData(KnowledgeModel):
    training_sessions: List[TodayTrainingSession] = field(default_factory=list)
    meals: List[TodayMeal] = field(default_factory=list)
    fasting_session: Optional[TodayFastingSession] = None
    body_scans: List[TodayBodyScan] = field(default_factory=list)
    has_training: bool = False
    has_nutrition: bool = False
    has_fasting: bool = False
    has_body_scan: bool = False
    total_activities: int = 0

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "training_sessions": self.training_sessions,
            "meals": self.meals,
            "fasting_session": self.fasting_session,
            "body_scans": self.body_scans,
        }


# =============================================================================
# PERINATAL NUTRITION
# =============================================================================

@dataclass
class NutritionalNeeds:
    extra_calories: int = 0
    extra_protein: int = 0
    calcium_mg: int = 1000
    iron_mg: int = 18
    omega3_mg: int = 250
    water_l: float = 2.0


@dataclass
class FoodRecommendations:
    priority_foods: List[str] = field(default_factory=list)
    limited_foods: List[str] = field(default_factory=list)
    avoid_foods: List[str] = field(default_factory=list)
    meal_frequency: str = "standard"


@dataclass
class PerinatalKnowledge(KnowledgeModel):
    is_breastfeeding: bool = False
    breastfeeding_type: Optional[str] = None  # exclusive | mixed | weaning
    baby_age_months: Optional[int] = None
    start_date: Optional[datetime] = None
    duration_months: Optional[int] = None
    nutritional_needs: NutritionalNeeds = field(default_factory=NutritionalNeeds)
    recommendations: FoodRecommendations = field(default_factory=FoodRecommendations)
    notes: Optional[str] = None
    has_data: bool = False

    def completeness_fields(self) -> Dict[str, Any]:
        return {
            "breastfeeding_type": self.breastfeeding_type,
            "baby_age_months": self.baby_age_months,
            "start_date": self.start_date,
            "duration_months": self.duration_months,
            "priority_foods": self.recommendations.priority_foods,
            "notes": self.notes,
        }


# =============================================================================
# SNAPSHOT
# =============================================================================

DOMAIN_ATTRIBUTES: Dict[Domain, str] = {
    Domain.TRAINING: "training",
    Domain.EQUIPMENT: "equipment",
    Domain.NUTRITION: "nutrition",
    Domain.FASTING: "fasting",
    Domain.BODY_SCAN: "body_scan",
    Domain.ENERGY: "energy",
    Domain.TEMPORAL: "temporal",
    Domain.TODAY: "today",
    Domain.PERINATAL: "perinatal",
}

DOMAIN_MODELS: Dict[Domain, type] = {
    Domain.TRAINING: TrainingKnowledge,
    Domain.EQUIPMENT: EquipmentKnowledge,
    Domain.NUTRITION: NutritionKnowledge,
    Domain.FASTING: FastingKnowledge,
    Domain.BODY_SCAN: BodyScanKnowledge,
    Domain.ENERGY: EnergyKnowledge,
    Domain.TEMPORAL: TemporalKnowledge,
    Domain.TODAY: TodayData,
    Domain.PERINATAL: PerinatalKnowledge,
}


def default_knowledge(domain: Domain) -> KnowledgeModel:
    """The documented empty value for a domain."""
    return DOMAIN_MODELS[domain]()


@dataclass(frozen=True)
class UserKnowledge:
    """
    Point-in-time view across all domains for one user.

    Immutable: refreshing a domain produces a new snapshot via with_slice().
    """
    user_id: str
    profile: ProfileKnowledge
    training: TrainingKnowledge
    equipment: EquipmentKnowledge
    nutrition: NutritionKnowledge
    fasting: FastingKnowledge
    body_scan: BodyScanKnowledge
    energy: EnergyKnowledge
    temporal: TemporalKnowledge
    today: TodayData
    perinatal: PerinatalKnowledge
    last_updated: Dict[Domain, datetime]
    completeness: Dict[Domain, int]
    loaded_at: datetime

    def slice(self, domain: Domain) -> KnowledgeModel:
        return getattr(self, DOMAIN_ATTRIBUTES[domain])

    def with_slice(
        self,
        domain: Domain,
        value: KnowledgeModel,
        completeness: int,
        updated_at: datetime,
    ) -> "UserKnowledge":
        """Copy with exactly one slice and its own metadata entries replaced."""
        last_updated = dict(self.last_updated)
        last_updated[domain] = updated_at
        scores = dict(self.completeness)
        scores[domain] = completeness
        return replace(
            self,
            **{DOMAIN_ATTRIBUTES[domain]: value},
            last_updated=last_updated,
            completeness=scores,
        )

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)

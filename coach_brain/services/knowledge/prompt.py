"""
Prompt Enrichment Builder

Renders a BrainContext (knowledge snapshot + app activity + live session +
gap report) into the system prompt handed to the coaching model.

Layout, in order:
    <base prompt>
    ## USER CONTEXT            knowledge summary
    ## CURRENT ACTIVITY        page, activity state, today's activities
    ## RESPONSE STYLE          length / tone / emoji directive
    ## ADDITIONAL INSTRUCTIONS live-session micro-instructions, top suggestion

Progressive disclosure: a section with nothing to say is left out entirely,
and inside a section only populated values are rendered.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from coach_brain.services.knowledge.gaps import MissingDataReport
from coach_brain.services.knowledge.models import TodayData, UserKnowledge, serialize
from coach_brain.services.knowledge.session import ResponseStyle, SessionAwareness, resolve_response_style


class ActivityState(str, Enum):
    IDLE = "idle"
    NAVIGATION = "navigation"
    TRAINING_ACTIVE = "training-active"
    TRAINING_REST = "training-rest"
    POST_TRAINING = "post-training"
    MEAL_SCAN = "meal-scan"
    FRIDGE_SCAN = "fridge-scan"
    BODY_SCAN = "body-scan"
    PROFILE_EDITING = "profile-editing"


@dataclass
class PageContext:
    type: str = "other"  # home | training | profile | settings | other
    sub_context: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AppActivityContext:
    current_route: str = "/"
    previous_route: Optional[str] = None
    page_context: PageContext = field(default_factory=PageContext)
    activity_state: ActivityState = ActivityState.IDLE
    locale: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class BrainContext:
    """Everything one prompt build needs. Built per request, never stored."""
    user: UserKnowledge
    app: AppActivityContext
    session: SessionAwareness
    missing_data: MissingDataReport
    today_data: Optional[TodayData]
    cache_key: str
    timestamp: datetime


@dataclass
class PromptEnrichment:
    system_prompt_additions: List[str]
    contextual_instructions: List[str]
    user_knowledge_summary: str
    current_activity_context: str
    suggested_response_style: ResponseStyle

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


LENGTH_DIRECTIVES = {
    "ultra-short": "5-15 words maximum",
    "short": "1-2 short sentences",
    "medium": "2-4 sentences",
    "detailed": "detailed answer",
}

TONE_DIRECTIVES = {
    "motivational": "motivating and energetic",
    "technical": "technical and precise",
    "informative": "informative and educational",
    "conversational": "natural and conversational",
}

TREND_LABELS = {"improving": "improving", "declining": "declining", "stable": "stable"}


def _date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


def _number(value: float) -> str:
    return f"{value:g}"


class PromptBuilder:
    """Builds the enriched system prompt for the coach."""

    def build_system_prompt(self, context: BrainContext, base_prompt: str) -> str:
        enrichment = self.build_enrichment(context)

        sections: List[str] = [base_prompt]
        if enrichment.user_knowledge_summary:
            sections += ["", "## USER CONTEXT", enrichment.user_knowledge_summary]
        if enrichment.current_activity_context:
            sections += ["", "## CURRENT ACTIVITY", enrichment.current_activity_context]
        sections += ["", "## RESPONSE STYLE", self.format_response_style(enrichment.suggested_response_style)]
        if enrichment.system_prompt_additions:
            sections += ["", "## ADDITIONAL INSTRUCTIONS"]
            sections += enrichment.system_prompt_additions

        return "\n".join(sections)

    def build_enrichment(self, context: BrainContext) -> PromptEnrichment:
        additions: List[str] = []
        instructions: List[str] = []

        session = context.session
        if session.is_active and session.training_session is not None:
            additions, instructions = self._live_session(session)

        top = context.missing_data.top_suggestion
        if top is not None:
            additions.append(f"Proactive suggestion available: {top.message}")

        return PromptEnrichment(
            system_prompt_additions=additions,
            contextual_instructions=instructions,
            user_knowledge_summary=self.build_user_knowledge_summary(context.user),
            current_activity_context=self.build_activity_context(context),
            suggested_response_style=resolve_response_style(session),
        )

    def _live_session(self, session: SessionAwareness):
        training = session.training_session
        exercise = training.current_exercise
        name = exercise.name if exercise else "unknown"
        load = f"{_number(exercise.load)}kg" if exercise and exercise.load else "bodyweight"
        reps = exercise.reps if exercise and exercise.reps else "?"
        sets = exercise.sets if exercise and exercise.sets else "?"

        instructions = [
            f"LIVE SESSION ({training.discipline}): "
            f"exercise {training.current_exercise_index + 1}/{training.total_exercises} - {name} "
            f"({load}, {reps} reps x {sets} sets), set {training.current_set}/{training.total_sets}"
        ]
        additions: List[str] = []

        if training.is_resting:
            instructions.append(f"ACTIVE REST: {training.rest_time_remaining}s left before the next set.")
            additions += [
                "REST PERIOD (15-30 words):",
                "- Use the rest to give technique advice",
                "- Explain the progression or the purpose of the exercise",
                "- Answer questions in detail",
                "- Encourage for the next set",
            ]
            if training.next_exercise is not None and training.current_set >= training.total_sets:
                additions.append(f"- Next up: {training.next_exercise.name}")
        else:
            instructions.append(f"EFFORT IN PROGRESS: set {training.current_set}/{training.total_sets} active.")
            additions += [
                "ACTIVE EFFORT - ULTRA-SHORT (5-15 words MAX):",
                "- Explosive motivation and encouragement",
                "- Critical technique corrections only",
                "- Safety alerts if needed",
                "- No details, no explanations",
            ]

        if exercise is not None:
            additions += [
                f"CURRENT EXERCISE: {name}",
                f"   Load: {load}",
                f"   Reps: {reps}",
                f"   Set: {training.current_set}/{sets}",
                f"   Elapsed: {training.session_time_elapsed // 60}min",
            ]
            if exercise.coach_tips:
                additions.append(f"   Cues: {'; '.join(exercise.coach_tips[:3])}")
        if training.last_rpe is not None:
            additions.append(f"Last reported RPE: {_number(training.last_rpe)}/10")

        return additions, instructions

    # -------------------------------------------------------------------------
    # Knowledge summary
    # -------------------------------------------------------------------------

    def build_user_knowledge_summary(self, user: UserKnowledge) -> str:
        parts: List[str] = []
        parts += self._profile_lines(user)
        parts += self._section("TRAINING", self._training_lines(user))
        parts += self._section("EQUIPMENT", self._equipment_lines(user))
        parts += self._section("NUTRITION", self._nutrition_lines(user))
        parts += self._section("FASTING", self._fasting_lines(user))
        parts += self._section("BODY COMPOSITION", self._body_scan_lines(user))
        parts += self._section("ENERGY", self._energy_lines(user))
        parts += self._section("TRAINING PATTERNS", self._temporal_lines(user))
        parts += self._section("BREASTFEEDING", self._perinatal_lines(user))
        return "\n".join(parts).strip("\n")

    @staticmethod
    def _section(title: str, lines: List[str]) -> List[str]:
        if not lines:
            return []
        return [f"\n### {title}"] + lines

    def _profile_lines(self, user: UserKnowledge) -> List[str]:
        profile = user.profile
        lines = []
        if profile.display_name:
            lines.append(f"Name: {profile.display_name}")
        if profile.age:
            lines.append(f"Age: {profile.age}")
        if profile.sex:
            lines.append(f"Sex: {profile.sex}")
        bmi = profile.bmi()
        if bmi is not None:
            lines.append(
                f"Build: {_number(profile.height_cm)}cm, {_number(profile.weight_kg)}kg (BMI: {bmi})"
            )
        if profile.target_weight_kg:
            lines.append(f"Target weight: {_number(profile.target_weight_kg)}kg")
        if profile.objective:
            lines.append(f"Objective: {profile.objective}")
        elif profile.objectives:
            lines.append(f"Objectives: {', '.join(profile.objectives)}")
        if profile.activity_level:
            lines.append(f"Activity level: {profile.activity_level}")
        if profile.preferred_disciplines:
            lines.append(f"Preferred disciplines: {', '.join(profile.preferred_disciplines)}")
        if profile.level:
            lines.append(f"Level: {profile.level}")
        return lines

    def _training_lines(self, user: UserKnowledge) -> List[str]:
        training = user.training
        if not training.has_data:
            return []
        lines = []
        if training.last_session_date:
            lines.append(f"Last session: {_date(training.last_session_date)}")
        if training.avg_rpe > 0:
            lines.append(f"Average RPE: {training.avg_rpe:.1f}/10")
        if training.weekly_volume > 0:
            lines.append(f"Weekly volume: {training.weekly_volume} exercises")
        if training.recent_sessions:
            completed = sum(1 for s in training.recent_sessions if s.completed)
            lines.append(f"Recent sessions: {completed}/{len(training.recent_sessions)} completed")
        increasing = [p.exercise_name for p in training.progression_patterns if p.trend == "increasing"]
        if increasing:
            lines.append(f"Progressing on: {', '.join(increasing[:3])}")
        if training.personal_records:
            lines.append(f"Personal records: {len(training.personal_records)} set")
        if training.active_goals:
            lines.append(f"Active goals: {len(training.active_goals)}")
            for goal in training.active_goals[:2]:
                current = goal.current_value or 0
                target = _number(goal.target_value) if goal.target_value is not None else "?"
                lines.append(
                    f"  - {goal.title}: {goal.progress_percent()}% ({_number(current)}/{target} {goal.unit})".rstrip()
                )
        return lines

    def _equipment_lines(self, user: UserKnowledge) -> List[str]:
        equipment = user.equipment
        if not equipment.locations:
            return []
        lines = [
            f"Training locations: {len(equipment.locations)}",
            f"Available equipment: {len(equipment.available_equipment)} types",
        ]
        default = equipment.default_location()
        if default is not None:
            lines.append(f"Default location: {default.name}")
        return lines

    def _nutrition_lines(self, user: UserKnowledge) -> List[str]:
        nutrition = user.nutrition
        if not nutrition.has_data:
            return []
        lines = []
        if nutrition.recent_meals:
            lines.append(f"Recent meals: {len(nutrition.recent_meals)} logged")
        if nutrition.average_calories > 0:
            lines.append(f"Average intake: {round(nutrition.average_calories)} kcal/day")
        if nutrition.average_protein > 0:
            lines.append(f"Average protein: {round(nutrition.average_protein)}g/day")
        if nutrition.dietary_preferences:
            lines.append(f"Dietary preferences: {', '.join(nutrition.dietary_preferences)}")
        if nutrition.scan_frequency > 0:
            lines.append(f"Scan frequency: {_number(nutrition.scan_frequency)} meals/week")
        if nutrition.meal_plan is not None and nutrition.meal_plan.is_active:
            lines.append(f"Active meal plan: {nutrition.meal_plan.meals_planned} meals planned")
        return lines

    def _fasting_lines(self, user: UserKnowledge) -> List[str]:
        fasting = user.fasting
        if not fasting.has_data:
            return []
        lines = []
        current = fasting.current_session
        if current is not None:
            lines.append(
                f"Fast in progress: {_number(current.actual_duration or 0)}h/"
                f"{_number(current.target_duration)}h ({current.protocol})"
            )
        if fasting.total_sessions_completed > 0:
            lines.append(f"Completed fasts: {fasting.total_sessions_completed}")
        if fasting.average_fasting_duration > 0:
            lines.append(f"Average duration: {_number(fasting.average_fasting_duration)}h")
        if fasting.preferred_protocol:
            lines.append(f"Preferred protocol: {fasting.preferred_protocol}")
        return lines

    def _body_scan_lines(self, user: UserKnowledge) -> List[str]:
        body = user.body_scan
        if not body.has_data:
            return []
        lines = []
        if body.recent_scans:
            lines.append(f"Recent scans: {len(body.recent_scans)}")
        m = body.latest_measurements
        if m is not None:
            if m.weight:
                lines.append(f"Current weight: {_number(m.weight)}kg")
            if m.body_fat:
                lines.append(f"Body fat: {_number(m.body_fat)}%")
            if m.muscle_mass:
                lines.append(f"Muscle mass: {_number(m.muscle_mass)}kg")
        if body.progression_trend:
            lines.append(f"Trend: {TREND_LABELS.get(body.progression_trend, body.progression_trend)}")
        return lines

    def _energy_lines(self, user: UserKnowledge) -> List[str]:
        energy = user.energy
        if not energy.has_data and not energy.has_wearable_connected:
            return []
        lines = []
        if energy.connected_devices:
            lines.append(f"Connected devices: {', '.join(energy.connected_devices)}")
        if energy.recent_activities:
            lines.append(f"Recent activities: {len(energy.recent_activities)}")
        if energy.training_load_7d > 0:
            lines.append(f"7-day training load: {_number(energy.training_load_7d)}")
        if energy.fatigue_score is not None:
            lines.append(f"Fatigue: {_number(energy.fatigue_score)}/100")
        if energy.recovery_score is not None:
            lines.append(f"Recovery: {_number(energy.recovery_score)}/100")
        bio = energy.biometrics
        if bio.hr_resting:
            lines.append(f"Resting HR: {_number(bio.hr_resting)} bpm")
        if bio.hrv_avg:
            lines.append(f"HRV: {_number(bio.hrv_avg)} ms")
        if bio.vo2max_estimated:
            lines.append(f"Estimated VO2max: {_number(bio.vo2max_estimated)}")
        return lines

    def _temporal_lines(self, user: UserKnowledge) -> List[str]:
        temporal = user.temporal
        if not temporal.has_data:
            return []
        lines = []
        if temporal.weekly_frequency > 0:
            lines.append(f"Weekly frequency: {_number(temporal.weekly_frequency)} sessions")
        if temporal.preferred_time_of_day:
            lines.append(f"Preferred time: {temporal.preferred_time_of_day}")
        if temporal.training_patterns:
            days = ", ".join(p.weekday for p in temporal.training_patterns[:3])
            lines.append(f"Usual training days: {days}")
        if temporal.preferred_rest_days:
            lines.append(f"Rest days: {', '.join(temporal.preferred_rest_days)}")
        if temporal.average_session_duration > 0:
            lines.append(f"Average session: {_number(temporal.average_session_duration)}min")
        if temporal.consistency_score > 0:
            lines.append(f"Consistency: {_number(temporal.consistency_score)}%")
        return lines

    def _perinatal_lines(self, user: UserKnowledge) -> List[str]:
        perinatal = user.perinatal
        if not perinatal.is_breastfeeding:
            return []
        needs = perinatal.nutritional_needs
        lines = [f"Breastfeeding: {perinatal.breastfeeding_type or 'yes'}"]
        if perinatal.baby_age_months is not None:
            lines.append(f"Baby age: {perinatal.baby_age_months} months")
        lines.append(f"Extra needs: +{needs.extra_calories} kcal/day, +{needs.extra_protein}g protein/day")
        lines.append(
            f"Daily targets: calcium {needs.calcium_mg}mg, iron {needs.iron_mg}mg, "
            f"omega-3 {needs.omega3_mg}mg, water {_number(needs.water_l)}L"
        )
        if perinatal.recommendations.avoid_foods:
            lines.append(f"Avoid: {', '.join(perinatal.recommendations.avoid_foods)}")
        return lines

    # -------------------------------------------------------------------------
    # Activity
    # -------------------------------------------------------------------------

    def build_activity_context(self, context: BrainContext) -> str:
        app = context.app
        lines = [f"Current page: {app.page_context.type}"]
        if app.page_context.sub_context:
            lines.append(f"Sub-context: {app.page_context.sub_context}")
        lines.append(f"Activity state: {ActivityState(app.activity_state).value}")
        if context.session.is_active and context.session.session_type:
            lines.append(f"Active session: {context.session.session_type}")

        today = context.today_data
        if today is not None:
            lines.append("\n### TODAY'S ACTIVITIES")
            if today.has_training:
                lines.append(f"Training: {len(today.training_sessions)}")
                for session in today.training_sessions:
                    lines.append(f"  - {session.discipline} ({session.status}, {session.exercise_count} exercises)")
            if today.has_nutrition:
                calories = sum(m.calories for m in today.meals)
                protein = sum(m.protein for m in today.meals)
                lines.append(f"Nutrition: {len(today.meals)} meals ({round(calories)} kcal, {round(protein)}g protein)")
            if today.has_fasting and today.fasting_session is not None:
                fast = today.fasting_session
                lines.append(f"Fast in progress: {_number(fast.current_duration)}h/{_number(fast.target_duration)}h")
            if today.has_body_scan:
                lines.append(f"Body scans: {len(today.body_scans)}")
            if today.total_activities == 0:
                lines.append("No activity logged today")

        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Style
    # -------------------------------------------------------------------------

    @staticmethod
    def format_response_style(style: ResponseStyle) -> str:
        return "\n".join([
            f"Length: {style.length} ({LENGTH_DIRECTIVES[style.length]})",
            f"Tone: {TONE_DIRECTIVES[style.tone]}",
            f"Formality: {style.formality}",
            f"Emoji: {'yes' if style.emoji else 'no'}",
        ])

"""
Perinatal Nutrition Collector

Breastfeeding status from the user's tracking row and the nutritional needs
that follow from it. Needs are only raised above baseline while the user is
actually breastfeeding.
"""

from typing import Any, Dict, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, to_int
from coach_brain.services.knowledge.models import FoodRecommendations, NutritionalNeeds, PerinatalKnowledge

EXTRA_CALORIES = {"exclusive": 500, "mixed": 350, "weaning": 250}
LATE_STAGE_MONTHS = 6
LATE_STAGE_FACTOR = 0.85

PRIORITY_FOODS = [
    "fatty fish (salmon, sardines)",
    "dairy or fortified alternatives",
    "eggs",
    "legumes",
    "leafy greens",
    "whole grains",
    "nuts and seeds",
]
LIMITED_FOODS = ["caffeine (max 300 mg/day)", "high-mercury fish (tuna, swordfish)"]
AVOID_FOODS = ["alcohol"]


def nutritional_needs(breastfeeding_type: Optional[str], baby_age_months: Optional[int]) -> NutritionalNeeds:
    calories = EXTRA_CALORIES.get(breastfeeding_type or "", EXTRA_CALORIES["mixed"])
    if baby_age_months is not None and baby_age_months > LATE_STAGE_MONTHS:
        calories = round(calories * LATE_STAGE_FACTOR)
    return NutritionalNeeds(
        extra_calories=calories,
        extra_protein=25 if breastfeeding_type == "exclusive" else 15,
        calcium_mg=1300,
        iron_mg=9,
        omega3_mg=300,
        water_l=3.0,
    )


def food_recommendations(breastfeeding_type: Optional[str]) -> FoodRecommendations:
    return FoodRecommendations(
        priority_foods=list(PRIORITY_FOODS),
        limited_foods=list(LIMITED_FOODS),
        avoid_foods=list(AVOID_FOODS),
        meal_frequency="5-6 small meals" if breastfeeding_type == "exclusive" else "4-5 meals",
    )


class PerinatalCollector(BaseCollector):
    domain = Domain.PERINATAL

    async def _collect(self, user_id: str) -> PerinatalKnowledge:
        row = await self.store.fetch_one(
            "breastfeeding_tracking",
            user_id,
            order_by="updated_at",
        )
        if row is None:
            return PerinatalKnowledge()
        return self._from_row(row)

    def _from_row(self, row: Dict[str, Any]) -> PerinatalKnowledge:
        active = bool(row.get("is_breastfeeding"))
        kind = row.get("breastfeeding_type") or None
        baby_age = to_int(row.get("baby_age_months"))
        start = parse_timestamp(row.get("start_date"))

        duration = None
        if start is not None:
            delta = self.clock() - start
            duration = max(delta.days // 30, 0)

        if not active:
            return PerinatalKnowledge(
                is_breastfeeding=False,
                start_date=start,
                notes=row.get("notes") or None,
                has_data=True,
            )

        return PerinatalKnowledge(
            is_breastfeeding=True,
            breastfeeding_type=kind,
            baby_age_months=baby_age,
            start_date=start,
            duration_months=duration,
            nutritional_needs=nutritional_needs(kind, baby_age),
            recommendations=food_recommendations(kind),
            notes=row.get("notes") or None,
            has_data=True,
        )

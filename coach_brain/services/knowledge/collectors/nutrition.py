"""
Nutrition Data Collector

Recent meal scans, the active meal plan and dietary preferences.
Daily averages are computed over days that have at least one meal, so
unlogged days do not drag the average towards zero.
"""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, as_list, to_float, to_int
from coach_brain.services.knowledge.models import MealPlanSummary, MealSummary, NutritionKnowledge


class NutritionCollector(BaseCollector):
    domain = Domain.NUTRITION

    async def _collect(self, user_id: str) -> NutritionKnowledge:
        meals, plan, preferences = await asyncio.gather(
            self._recent_meals(user_id),
            self._optional(self._active_plan(user_id), None, "meal plan"),
            self._optional(self._dietary_preferences(user_id), [], "dietary preferences"),
        )

        weeks = max(settings.NUTRITION_LOOKBACK_DAYS / 7, 1)
        average_calories, average_protein = daily_averages(meals)

        return NutritionKnowledge(
            recent_meals=meals,
            meal_plan=plan,
            scan_frequency=round(len(meals) / weeks, 1),
            last_scan_date=meals[0].date if meals else None,
            average_calories=average_calories,
            average_protein=average_protein,
            dietary_preferences=preferences,
            has_data=len(meals) > 0 or plan is not None,
        )

    async def _recent_meals(self, user_id: str) -> List[MealSummary]:
        rows = await self.store.fetch_rows(
            "meals",
            user_id,
            since=self.since(settings.NUTRITION_LOOKBACK_DAYS),
            since_column="consumed_at",
            order_by="consumed_at",
            limit=settings.NUTRITION_MEAL_LIMIT,
        )
        return [
            MealSummary(
                id=str(row["id"]),
                name=row.get("meal_name") or "Meal",
                date=parse_timestamp(row.get("consumed_at")),
                calories=to_float(row.get("total_kcal"), 0),
                protein=to_float(row.get("protein_g"), 0),
                carbs=to_float(row.get("carbs_g"), 0),
                fats=to_float(row.get("fat_g"), 0),
                meal_type=row.get("meal_type") or "other",
            )
            for row in rows
        ]

    async def _active_plan(self, user_id: str) -> Optional[MealPlanSummary]:
        row = await self.store.fetch_one(
            "meal_plans",
            user_id,
            filters={"is_active": True},
            order_by="created_at",
        )
        if row is None:
            return None
        meals_planned = to_int(row.get("meals_planned"))
        if meals_planned is None:
            meals_planned = len(as_list(row.get("meals")))
        return MealPlanSummary(
            id=str(row["id"]),
            week_start=parse_timestamp(row.get("week_start")),
            week_end=parse_timestamp(row.get("week_end")),
            is_active=bool(row.get("is_active")),
            meals_planned=meals_planned,
        )

    async def _dietary_preferences(self, user_id: str) -> List[str]:
        row = await self.store.fetch_one("user_preferences", user_id)
        if row is None:
            return []
        preferences: List[str] = []
        for column in ("dietary_preferences", "dietary_restrictions"):
            for item in as_list(row.get(column)):
                if item and item not in preferences:
                    preferences.append(str(item))
        return preferences


def daily_averages(meals: List[MealSummary]) -> tuple:
    """(avg kcal/day, avg protein g/day) over days with logged meals."""
    per_day: Dict[Any, List[float]] = defaultdict(lambda: [0.0, 0.0])
    for meal in meals:
        if meal.date is None:
            continue
        totals = per_day[meal.date.date()]
        totals[0] += meal.calories
        totals[1] += meal.protein
    if not per_day:
        return 0.0, 0.0
    days = len(per_day)
    return (
        round(sum(t[0] for t in per_day.values()) / days, 1),
        round(sum(t[1] for t in per_day.values()) / days, 1),
    )

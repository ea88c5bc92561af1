from __future__ import annotations

from datetime import date as Date
from typing import Any, Iterable

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import FoodAnalysis
from infra.db.models import Meal


class MealRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_meal(
        self,
        *,
        user_id: int,
        analysis: FoodAnalysis,
        photo_url: str | None,
        on_date: Date,
        autocommit: bool = True,
    ) -> Meal:
        res = await self.session.execute(
            insert(Meal)
            .values(
                user_id=user_id,
                name=analysis.name,
                calories=int(analysis.calories),
                protein=float(analysis.protein),
                fat=float(analysis.fat),
                carbs=float(analysis.carbs),
                ingredients=list(analysis.ingredients),
                weight_g=analysis.weight_g,
                confidence=analysis.confidence,
                photo_url=photo_url,
                date=on_date,
            )
            .returning(Meal.id)
        )
        meal_id = int(res.scalar_one())
        if autocommit:
            await self.session.commit()
        return await self.get_by_id(meal_id)  # type: ignore[return-value]

    async def get_by_id(self, meal_id: int) -> Meal | None:
        res = await self.session.execute(select(Meal).where(Meal.id == meal_id))
        return res.scalar_one_or_none()

    async def list_by_date(self, *, user_id: int, on_date: Date) -> list[Meal]:
        res = await self.session.execute(
            select(Meal)
            .where(Meal.user_id == user_id, Meal.date == on_date)
            .order_by(Meal.created_at.desc(), Meal.id.desc())
        )
        return list(res.scalars().all())

    async def delete_meal(self, meal_id: int, *, autocommit: bool = True) -> None:
        await self.session.execute(delete(Meal).where(Meal.id == meal_id))
        if autocommit:
            await self.session.commit()

    @staticmethod
    def totals(meals: Iterable[Meal]) -> dict[str, Any]:
        meals = list(meals)
        return {
            "calories": sum(int(m.calories) for m in meals),
            "protein": round(sum(float(m.protein) for m in meals), 1),
            "fat": round(sum(float(m.fat) for m in meals), 1),
            "carbs": round(sum(float(m.carbs) for m in meals), 1),
        }

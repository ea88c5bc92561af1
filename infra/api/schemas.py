from __future__ import annotations

from datetime import date as Date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from domain.use_cases.daily_limit import premium_active
from infra.db.models import Meal, PaymentRequest, User


class CamelModel(BaseModel):
    # the WebApp speaks camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(BaseModel):
    error: str
    code: str | None = None


# Auth

class AuthInput(CamelModel):
    init_data: str = Field(..., min_length=1)


class RefreshInput(BaseModel):
    token: str


class UserOut(CamelModel):
    id: int
    telegram_id: str
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    phone_number: str | None = None
    daily_calorie_goal: int
    age: int | None = None
    gender: Literal["MALE", "FEMALE"] | None = None
    height_cm: int | None = None
    weight_kg: float | None = None
    activity: Literal["SEDENTARY", "LIGHT", "MODERATE", "ACTIVE", "VERY_ACTIVE"] | None = None
    goal: Literal["LOSS", "MAINTAIN", "GAIN"] | None = None
    is_premium: bool = False
    subscription_expires_at: datetime | None = None


class AuthOut(CamelModel):
    user: UserOut
    token: str
    expires_at: int


class UserUpdateInput(CamelModel):
    first_name: str | None = None
    daily_calorie_goal: int | None = None
    age: int | None = Field(None, ge=1, le=120)
    gender: Literal["MALE", "FEMALE"] | None = None
    height_cm: int | None = Field(None, ge=50, le=260)
    weight_kg: float | None = Field(None, ge=20, le=400)
    activity: Literal["SEDENTARY", "LIGHT", "MODERATE", "ACTIVE", "VERY_ACTIVE"] | None = None
    goal: Literal["LOSS", "MAINTAIN", "GAIN"] | None = None


class UserUpdateOut(CamelModel):
    user: UserOut
    recommended: int | None = None


# Meals

class AnalysisOut(CamelModel):
    name: str
    calories: int
    protein: float
    fat: float
    carbs: float
    ingredients: list[str] = []
    weight_g: int | None = None
    confidence: float | None = None
    photo_url: str | None = None


class MealOut(CamelModel):
    id: int
    user_id: int
    name: str
    calories: int
    protein: float
    fat: float
    carbs: float
    ingredients: list[str] = []
    weight_g: int | None = None
    confidence: float | None = None
    photo_url: str | None = None
    date: Date
    created_at: datetime | None = None


class MealCreatedOut(CamelModel):
    meal: MealOut


class Totals(BaseModel):
    calories: int
    protein: float
    fat: float
    carbs: float


class MealsDayOut(CamelModel):
    meals: list[MealOut]
    totals: Totals


# Subscriptions

class PaymentUserOut(CamelModel):
    id: int
    telegram_id: str
    first_name: str | None = None
    username: str | None = None
    phone_number: str | None = None


class PaymentRequestOut(CamelModel):
    id: int
    user_id: int
    amount: float
    currency: str
    status: Literal["PENDING", "APPROVED", "REJECTED"]
    receipt_url: str | None = None
    transaction_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    user: PaymentUserOut | None = None


class SubscriptionRequestOut(CamelModel):
    success: bool = True
    request: PaymentRequestOut


class SubscriptionStatusOut(CamelModel):
    is_premium: bool
    last_request_status: Literal["PENDING", "APPROVED", "REJECTED", "NONE"]
    last_request_date: datetime | None = None


class ApproveInput(CamelModel):
    request_id: int


class RejectInput(CamelModel):
    request_id: int
    reason: Literal["no_image", "no_funds"]


class VerifyInput(CamelModel):
    user_id: int


class DecisionOut(CamelModel):
    success: bool = True
    status: Literal["PENDING", "APPROVED", "REJECTED"]
    expires_at: datetime | None = None
    message: str | None = None


class VerifyOut(CamelModel):
    success: bool
    expires_at: datetime | None = None
    message: str | None = None


class SuccessOut(BaseModel):
    success: bool = True


# Serializers

def _enum_value(v):
    return v.value if v is not None else None


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        telegram_id=str(user.telegram_id),
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        phone_number=user.phone_number,
        daily_calorie_goal=user.daily_calorie_goal,
        age=user.age,
        gender=_enum_value(user.gender),
        height_cm=user.height_cm,
        weight_kg=user.weight_kg,
        activity=_enum_value(user.activity),
        goal=_enum_value(user.goal),
        is_premium=premium_active(user.is_premium, user.subscription_expires_at),
        subscription_expires_at=user.subscription_expires_at,
    )


def meal_out(meal: Meal) -> MealOut:
    return MealOut(
        id=meal.id,
        user_id=meal.user_id,
        name=meal.name,
        calories=meal.calories,
        protein=meal.protein,
        fat=meal.fat,
        carbs=meal.carbs,
        ingredients=list(meal.ingredients or []),
        weight_g=meal.weight_g,
        confidence=meal.confidence,
        photo_url=meal.photo_url,
        date=meal.date,
        created_at=meal.created_at,
    )


def payment_out(req: PaymentRequest, *, with_user: bool = False) -> PaymentRequestOut:
    user = None
    if with_user and req.user is not None:
        user = PaymentUserOut(
            id=req.user.id,
            telegram_id=str(req.user.telegram_id),
            first_name=req.user.first_name,
            username=req.user.username,
            phone_number=req.user.phone_number,
        )
    return PaymentRequestOut(
        id=req.id,
        user_id=req.user_id,
        amount=req.amount,
        currency=req.currency,
        status=req.status.value,
        receipt_url=req.receipt_url,
        transaction_id=req.transaction_id,
        created_at=req.created_at,
        updated_at=req.updated_at,
        user=user,
    )

from __future__ import annotations

import datetime as dt
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    Date,
    ForeignKey,
    MetaData,
    JSON,
    Enum as SAEnum,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")


metadata_obj = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    metadata = metadata_obj


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class GenderEnum(PyEnum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class ActivityLevelEnum(PyEnum):
    SEDENTARY = "SEDENTARY"
    LIGHT = "LIGHT"
    MODERATE = "MODERATE"
    ACTIVE = "ACTIVE"
    VERY_ACTIVE = "VERY_ACTIVE"


class GoalEnum(PyEnum):
    LOSS = "LOSS"
    MAINTAIN = "MAINTAIN"
    GAIN = "GAIN"


class PaymentStatusEnum(PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gender: Mapped[Optional[GenderEnum]] = mapped_column(SAEnum(GenderEnum, name="gender"), nullable=True)
    height_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    activity: Mapped[Optional[ActivityLevelEnum]] = mapped_column(
        SAEnum(ActivityLevelEnum, name="activity_level"), nullable=True
    )
    goal: Mapped[Optional[GoalEnum]] = mapped_column(SAEnum(GoalEnum, name="goal"), nullable=True)
    daily_calorie_goal: Mapped[int] = mapped_column(Integer, default=2000, server_default="2000")

    # written only by the subscription workflow, always together
    is_premium: Mapped[bool] = mapped_column(sa.Boolean, default=False, server_default=sa.false())
    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    daily_request_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_request_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    meals: Mapped[list["Meal"]] = relationship(back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    payment_requests: Mapped[list["PaymentRequest"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Meal(Base):
    __tablename__ = "meals"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(Text)
    calories: Mapped[int] = mapped_column(Integer)
    protein: Mapped[float] = mapped_column(Float)
    fat: Mapped[float] = mapped_column(Float)
    carbs: Mapped[float] = mapped_column(Float)
    ingredients: Mapped[list] = mapped_column(JSONType, default=list)
    weight_g: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # logical day the meal is logged for, may differ from created_at
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped[User] = relationship(back_populates="meals")

    __table_args__ = (
        CheckConstraint("calories >= 0 AND protein >= 0 AND fat >= 0 AND carbs >= 0", name="macros_nonneg"),
        Index("ix_meals_user_date", "user_id", "date"),
    )


class PaymentRequest(Base, TimestampMixin):
    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(8), default="TJS")
    status: Mapped[PaymentStatusEnum] = mapped_column(
        SAEnum(PaymentStatusEnum, name="payment_status"), default=PaymentStatusEnum.PENDING
    )
    receipt_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # bank document number; one statement line grants premium at most once
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    user: Mapped[User] = relationship(back_populates="payment_requests")

    __table_args__ = (
        Index("ix_payment_requests_user_created", "user_id", "created_at"),
        Index("ix_payment_requests_status", "status"),
    )

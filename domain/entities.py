from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Literal


Gender = Literal["MALE", "FEMALE"]
ActivityLevel = Literal["SEDENTARY", "LIGHT", "MODERATE", "ACTIVE", "VERY_ACTIVE"]
GoalType = Literal["LOSS", "MAINTAIN", "GAIN"]


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RejectReason(str, Enum):
    NO_IMAGE = "no_image"
    NO_FUNDS = "no_funds"


@dataclass
class FoodAnalysis:
    name: str
    calories: int
    protein: float
    fat: float
    carbs: float
    ingredients: List[str] = field(default_factory=list)
    weight_g: int | None = None
    confidence: float | None = None


@dataclass
class BankTransaction:
    docnum: str
    date: date | None
    name: str
    payer: str
    purpose: str
    amounts: dict[str, float] = field(default_factory=dict)  # column name -> value


@dataclass
class Decision:
    request_id: int
    user_id: int
    status: PaymentStatus
    expires_at: datetime | None = None


@dataclass
class VerifyResult:
    success: bool
    expires_at: datetime | None = None
    message: str | None = None
    request_id: int | None = None

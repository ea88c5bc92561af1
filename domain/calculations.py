from __future__ import annotations

import math


ACTIVITY_MULTIPLIERS = {
    "SEDENTARY": 1.2,
    "LIGHT": 1.375,
    "MODERATE": 1.55,
    "ACTIVE": 1.725,
    "VERY_ACTIVE": 1.9,
}

MIN_GOAL_KCAL = 800
MAX_GOAL_KCAL = 10000


def bmr_mifflin(gender: str, age: int, height_cm: float, weight_kg: float) -> float:
    if gender.upper() == "MALE":
        return 10 * weight_kg + 6.25 * height_cm - 5 * age + 5
    return 10 * weight_kg + 6.25 * height_cm - 5 * age - 161


def tdee_from_activity(bmr: float, activity: str | None) -> float:
    mult = ACTIVITY_MULTIPLIERS.get((activity or "SEDENTARY").upper(), 1.2)
    return bmr * mult


def bmi(weight_kg: float, height_cm: float) -> float | None:
    if not weight_kg or not height_cm:
        return None
    h = height_cm / 100
    return weight_kg / (h * h)


def target_kcal_from_goal(tdee: float, goal: str | None, body_mass_index: float | None) -> float:
    goal = (goal or "MAINTAIN").upper()
    if goal == "LOSS":
        # deficit grows with BMI: 15% / 20% / 25%
        if body_mass_index is not None and body_mass_index >= 30:
            return tdee * 0.75
        if body_mass_index is not None and body_mass_index >= 25:
            return tdee * 0.8
        return tdee * 0.85
    if goal == "GAIN":
        return tdee * 1.1
    return tdee


def recommended_calories(
    *,
    weight_kg: float | None,
    height_cm: float | None,
    age: int | None,
    gender: str | None,
    activity: str | None = None,
    goal: str | None = None,
) -> int | None:
    """Daily calorie goal, or None when the profile is incomplete."""
    if not weight_kg or not height_cm or not age or not gender:
        return None
    tdee = tdee_from_activity(bmr_mifflin(gender, age, height_cm, weight_kg), activity)
    target = target_kcal_from_goal(tdee, goal, bmi(weight_kg, height_cm))
    floor = 1500 if gender.upper() == "MALE" else 1200
    # half-up, not banker's rounding
    return int(math.floor(max(floor, target) / 10 + 0.5) * 10)

from __future__ import annotations

import base64
import json
import re
from typing import Any

import structlog
from openai import AsyncOpenAI

from core.config import settings
from domain.entities import FoodAnalysis
from services.vision.cache import get_cached_vision, set_cached_vision


log = structlog.get_logger(__name__)


SYSTEM_PROMPT = (
    "You are a nutritionist API. You strictly output JSON. Analyze the food image. "
    "Estimate weight in grams (weightG), confidence (0.0 to 1.0), and list main ingredients. "
    'If not food, return {"name": "Не еда", "calories": 0, "protein": 0, "fat": 0, "carbs": 0, '
    '"ingredients": [], "weightG": 0, "confidence": 0}.'
)

USER_PROMPT = (
    'Analyze this image and return JSON: { "name": "Food Name (start with uppercase, in Russian)", '
    '"calories": number, "protein": number, "fat": number, "carbs": number, '
    '"ingredients": ["ing1", "ing2"], "weightG": number, "confidence": number }'
)

# Returned whenever the model call or its output fails
FALLBACK_ANALYSIS = FoodAnalysis(
    name="[Fallback] Куриная грудка с рисом",
    calories=450,
    protein=45.0,
    fat=12.0,
    carbs=38.0,
    ingredients=["Курица", "Рис", "Масло"],
    weight_g=350,
    confidence=0.8,
)

_FENCE = re.compile(r"```(?:json)?\n?")


def normalize_ingredients(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(x) for x in raw if x not in (None, "")]
    if raw:
        return [str(raw)]
    return []


def parse_analysis(content: str) -> FoodAnalysis:
    data = json.loads(_FENCE.sub("", content).strip())
    return FoodAnalysis(
        name=str(data["name"]),
        calories=int(round(float(data["calories"]))),
        protein=round(float(data["protein"]), 1),
        fat=round(float(data["fat"]), 1),
        carbs=round(float(data["carbs"]), 1),
        ingredients=normalize_ingredients(data.get("ingredients")),
        weight_g=int(round(float(data.get("weightG") or 0))),
        confidence=float(data.get("confidence") or 0),
    )


class OpenAIVisionAnalyzer:
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model_vision

    async def _infer(self, image_url: str) -> FoodAnalysis:
        # client construction raises without a key; keep it inside the fallback scope
        client = AsyncOpenAI(api_key=self.api_key)
        resp = await client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            max_tokens=300,
        )
        content = resp.choices[0].message.content
        if not content:
            raise ValueError("empty model response")
        return parse_analysis(content)

    async def analyze(self, image_bytes: bytes, content_type: str = "image/jpeg") -> FoodAnalysis:
        cached = await get_cached_vision(image_bytes)
        if cached:
            return FoodAnalysis(**cached)
        try:
            b64 = base64.b64encode(image_bytes).decode("ascii")
            result = await self._infer(f"data:{content_type};base64,{b64}")
        except Exception as e:
            # any provider or parsing failure yields the placeholder estimate
            log.warning("vision_fallback", error=str(e))
            return FALLBACK_ANALYSIS
        await set_cached_vision(image_bytes, result.__dict__, ttl_sec=settings.vision_cache_ttl_sec)
        return result

    async def analyze_url(self, image_url: str) -> FoodAnalysis:
        """Same as ``analyze`` for an image the model can fetch itself. Not cached."""
        try:
            return await self._infer(image_url)
        except Exception as e:
            log.warning("vision_fallback", error=str(e), source="url")
            return FALLBACK_ANALYSIS

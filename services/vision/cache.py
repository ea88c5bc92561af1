from __future__ import annotations

import hashlib
import json
from typing import Any

import structlog
from redis.exceptions import RedisError

from infra.cache.redis import redis_client


log = structlog.get_logger(__name__)


def _key_for_image_bytes(b: bytes) -> str:
    h = hashlib.sha256(b).hexdigest()[:32]
    return f"vision:img:{h}"


async def get_cached_vision(b: bytes) -> dict | None:
    try:
        raw = await redis_client.get(_key_for_image_bytes(b))
    except (RedisError, OSError) as e:
        log.warning("vision_cache_unavailable", error=str(e))
        return None
    return json.loads(raw) if raw else None


async def set_cached_vision(b: bytes, data: dict[str, Any], ttl_sec: int = 60 * 60 * 6) -> None:
    key = _key_for_image_bytes(b)
    try:
        await redis_client.setex(key, ttl_sec, json.dumps(data, ensure_ascii=False))
    except (RedisError, OSError) as e:
        log.warning("vision_cache_unavailable", error=str(e))

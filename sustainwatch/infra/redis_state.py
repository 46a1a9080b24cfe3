from __future__ import annotations

import logging
import os
from functools import lru_cache

from redis import Redis
from redis.exceptions import RedisError

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
LATEST_READINGS_PREFIX = "sustainwatch:latest"

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def latest_readings_key(tenant_id: str, site_id: str) -> str:
    return f"{LATEST_READINGS_PREFIX}:{tenant_id}:{site_id}"


def read_snapshot(key: str) -> str | None:
    raw = get_redis().get(key)
    if isinstance(raw, bytes):
        return raw.decode()
    return raw


def write_snapshot(key: str, payload: str) -> None:
    get_redis().set(key, payload)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except RedisError as exc:
        logger.warning("redis readiness check failed: %s", exc)
        return False

import json
import logging
from typing import Optional

import redis

from exambank.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)


def stats_key(exam_id: int) -> str:
    return f"stats:{exam_id}"


def get_cached_stats(exam_id: int) -> Optional[dict]:
    if not settings.STATS_CACHE_ENABLED:
        return None
    try:
        raw = redis_client.get(stats_key(exam_id))
    except redis.RedisError as e:
        logger.error(f"Cache get error for exam {exam_id}: {e}")
        return None
    return json.loads(raw) if raw else None


def cache_stats(exam_id: int, stats: dict) -> None:
    if not settings.STATS_CACHE_ENABLED:
        return
    try:
        redis_client.set(stats_key(exam_id), json.dumps(stats, default=str), ex=settings.STATS_CACHE_TTL)
    except redis.RedisError as e:
        logger.error(f"Cache set error for exam {exam_id}: {e}")


def invalidate_stats(exam_id: int) -> None:
    if not settings.STATS_CACHE_ENABLED:
        return
    try:
        redis_client.delete(stats_key(exam_id))
    except redis.RedisError as e:
        logger.error(f"Cache delete error for exam {exam_id}: {e}")

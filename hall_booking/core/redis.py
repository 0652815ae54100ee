import json
import redis
from redis.exceptions import RedisError

from hall_booking.core.config import REDIS_URL
from hall_booking.core.logging_config import get_logger

logger = get_logger()

_redis_client = None


def get_redis_client():
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    if not REDIS_URL:
        return None

    try:
        client = redis.Redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
        logger.info("Redis connected")
        _redis_client = client
        return _redis_client
    except RedisError as e:
        logger.warning(f"Redis unavailable: {e}")
        return None


# ---------------------------------------------------------------------
# BEST-EFFORT CACHE
# ---------------------------------------------------------------------
def get_cache(key: str):
    client = get_redis_client()
    if not client:
        return None
    try:
        data = client.get(key)
        return json.loads(data) if data else None
    except RedisError:
        return None


def set_cache(key: str, value, ttl: int = 60):
    client = get_redis_client()
    if not client:
        return
    try:
        client.setex(key, ttl, json.dumps(value, default=str))
    except RedisError:
        pass


def delete_cache(key: str):
    client = get_redis_client()
    if not client:
        return
    try:
        client.delete(key)
    except RedisError:
        pass


def user_bookings_key(user_id: int) -> str:
    return f"user:{user_id}:bookings"


def invalidate_user_bookings(user_id: int):
    """Drop the cached "my bookings" view. Never raises."""
    try:
        delete_cache(user_bookings_key(user_id))
    except Exception:
        logger.opt(exception=True).error(f"Cache invalidation failed | User={user_id}")


# ---------------------------------------------------------------------
# SHORT-LIVED TOKENS (QR display tokens)
# ---------------------------------------------------------------------
def put_token(key: str, value: str, ttl: int) -> bool:
    client = get_redis_client()
    if not client:
        return False
    try:
        client.setex(key, ttl, value)
        return True
    except RedisError:
        return False


def get_token(key: str):
    client = get_redis_client()
    if not client:
        return None
    try:
        return client.get(key)
    except RedisError:
        return None

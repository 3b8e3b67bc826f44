import json
import uuid

from redis.exceptions import RedisError

from clearledger.infrastructure.cache.redis_client import get_redis_client
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

RELEASE_LOCK_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def get_json(cache_key: str) -> dict | None:
    try:
        raw = get_redis_client().get(cache_key)
    except RedisError:
        logger.warning("cache_read_failed", cache_key=cache_key)
        return None
    if raw is None or not isinstance(raw, str):
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def set_json(cache_key: str, value: dict, ttl_seconds: int) -> None:
    try:
        get_redis_client().setex(cache_key, ttl_seconds, json.dumps(value, default=str))
    except (RedisError, TypeError, ValueError):
        logger.warning("cache_write_failed", cache_key=cache_key)


def read_counter(counter_key: str) -> int | None:
    """Current value of a counter, 0 when unset, None when Redis cannot be read."""
    try:
        raw = get_redis_client().get(counter_key)
    except RedisError:
        logger.warning("cache_read_failed", cache_key=counter_key)
        return None
    try:
        return int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        return None


def bump_counters(*counter_keys: str) -> None:
    if not counter_keys:
        return
    try:
        client = get_redis_client()
        for counter_key in counter_keys:
            client.incr(counter_key)
    except RedisError:
        logger.warning("cache_invalidation_failed", cache_keys=list(counter_keys))


def acquire_lock(lock_key: str, ttl_seconds: int) -> str | None:
    # Redis being down must not block ledger writes: row locks still serialize them.
    token = str(uuid.uuid4())
    try:
        acquired = bool(get_redis_client().set(lock_key, token, nx=True, ex=ttl_seconds))
    except RedisError:
        return token
    return token if acquired else None


def release_lock(lock_key: str, token: str) -> None:
    try:
        get_redis_client().eval(RELEASE_LOCK_SCRIPT, 1, lock_key, token)
    except RedisError:
        return

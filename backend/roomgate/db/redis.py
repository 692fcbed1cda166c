"""Redis client for identity caching, rate limiting and the task queue"""
import redis
import redis.asyncio as aioredis
import json
import logging
from typing import Optional, Dict
from roomgate.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create async Redis client (lazy initialization)

    Automatically recreates the client if it's tied to a different event loop,
    which can happen when tests create new event loops.
    """
    global _async_client
    import asyncio

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        # No loop is running - refuse to create a client without one
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


# Rate limiting configuration
if settings.ENVIRONMENT == "development":
    RATE_LIMIT_WINDOW = 60  # seconds
    RATE_LIMIT_REQUESTS = 1000  # very lenient for dev
    RATE_LIMIT_STRICT_WINDOW = 60
    RATE_LIMIT_STRICT_REQUESTS = 1000
else:
    RATE_LIMIT_WINDOW = 60  # seconds
    RATE_LIMIT_REQUESTS = 300
    RATE_LIMIT_STRICT_WINDOW = 60
    RATE_LIMIT_STRICT_REQUESTS = 60  # state-changing operations (password guessing, revocations)


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"

    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = RATE_LIMIT_STRICT_WINDOW if strict else RATE_LIMIT_WINDOW
    max_requests = RATE_LIMIT_STRICT_REQUESTS if strict else RATE_LIMIT_REQUESTS

    current_count = increment_rate_limit(identifier, window)

    if current_count > max_requests:
        return False

    return True


def get_cached_identity(token_digest: str) -> Optional[Dict]:
    """Get a resolved identity ({id, email}) cached under the token's digest"""
    key = f"cache:identity:{token_digest}"
    cached = get_redis_client().get(key)
    if cached:
        return json.loads(cached)
    return None


def set_cached_identity(token_digest: str, identity: Dict, ttl: int) -> None:
    """Cache a resolved identity. Raw tokens are never used as keys."""
    key = f"cache:identity:{token_digest}"
    get_redis_client().setex(key, ttl, json.dumps(identity))

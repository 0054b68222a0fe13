"""Shared rate limiter with Redis storage and in-memory fallback.

Accept is the contended endpoint, so it gets its own tighter limit
(rate_limit_accept) on top of the default. With Redis the limits are
shared across workers; without it each worker counts on its own.
"""

import redis
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from .config import settings


def _resolve_storage() -> str | None:
    """Try Redis for distributed rate limiting; fall back to in-memory."""
    if settings.cache_backend != "redis" or not settings.redis_url:
        return None
    try:
        r = redis.from_url(settings.redis_url, socket_connect_timeout=2)
        r.ping()
    except redis.RedisError:
        logger.warning(
            "Redis unavailable — rate limiter using in-memory storage "
            "(limits won't be shared across workers)"
        )
        return None
    logger.info("Rate limiter using Redis storage")
    return settings.redis_url


def actor_key(request: Request) -> str:
    """Limit suppliers per identity when known, else per client address."""
    supplier = request.headers.get("x-supplier-id")
    if supplier:
        return f"supplier:{supplier}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
    storage_uri=_resolve_storage() or "memory://",
)

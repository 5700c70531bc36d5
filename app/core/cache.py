"""Redis client and login/register throttling for StockAPI."""

from typing import Optional, Tuple

import redis.asyncio as redis
import structlog
from fastapi import Request

from app.core.config import get_settings
from app.core.errors import ApiError

logger = structlog.get_logger()


_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, creating if needed."""
    global _redis_client

    settings = get_settings()
    if not settings.redis_url:
        return None

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    return _redis_client


async def close_redis():
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def cache_ping() -> tuple[bool, str]:
    """Check if Redis is reachable. Returns (success, message)."""
    client = await get_redis()
    if client:
        try:
            await client.ping()
            return True, "connected"
        except Exception as e:
            return False, str(e)
    return False, "no client"


async def check_rate_limit(
    identifier: str,
    limit: int,
    window: int,
) -> Tuple[bool, int, int]:
    """
    Check and update rate limit for an identifier.

    Uses a fixed window counter in Redis.

    Args:
        identifier: Unique identifier (e.g. "auth:<ip>")
        limit: Maximum requests allowed per window
        window: Window size in seconds

    Returns:
        Tuple of (allowed, remaining, reset_seconds)
    """
    client = await get_redis()

    # If Redis unavailable, allow all requests (fail open)
    if not client:
        return True, limit, window

    key = f"ratelimit:{identifier}"

    try:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        results = await pipe.execute()

        current_count = results[0]
        ttl = results[1]

        # Set expiry on first request in window
        if ttl == -1:
            await client.expire(key, window)
            ttl = window

        remaining = max(0, limit - current_count)
        allowed = current_count <= limit

        return allowed, remaining, ttl if ttl > 0 else window

    except Exception as e:
        logger.warning("rate_limit.redis_error", error=str(e))
        return True, limit, window


def client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For from a proxy/load balancer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def auth_rate_limit(request: Request) -> None:
    """Dependency throttling register/login attempts per client IP."""
    settings = get_settings()
    ip = client_ip(request)
    allowed, _, reset = await check_rate_limit(
        f"auth:{ip}",
        limit=settings.auth_rate_limit,
        window=settings.auth_rate_window,
    )
    if not allowed:
        logger.warning("rate_limit_exceeded", client_ip=ip, path=request.url.path)
        raise ApiError(
            429,
            "RATE_LIMITED",
            f"Terlalu banyak percobaan. Coba lagi dalam {reset} detik",
            headers={"Retry-After": str(reset)},
        )

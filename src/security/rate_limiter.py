"""Redis-backed fixed-window rate limiter.

Uses INCR + EXPIRE for simple, performant rate limiting. Booking creation
checks the caller's profile before any database work, so a runaway client
cannot flood the per-provider booking locks.

Usage:
    from src.security.rate_limiter import booking_key, rate_limiter

    allowed, retry_after = await rate_limiter.check(
        booking_key(org_id, profile_id), limit=30, window=60
    )
"""

from __future__ import annotations

import logging
import uuid

from src.db.engine import redis_client

logger = logging.getLogger(__name__)


def booking_key(organization_id: uuid.UUID, profile_id: str) -> str:
    """Redis key counting booking attempts of one profile."""
    return f"rate:{organization_id}:{profile_id}:booking"


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR + EXPIRE."""

    def __init__(self, redis: object) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Check if a request is within the rate limit.

        Args:
            key: Redis key (see booking_key).
            limit: Max requests allowed in the window.
            window: Window size in seconds.

        Returns:
            (allowed, retry_after): allowed is True if under limit,
            retry_after is seconds until the window resets (0 if allowed).
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                return False, max(ttl, 1)

            return True, 0
        except Exception:
            logger.exception("Rate limiter Redis error for key %s", key)
            # Fail open: bookings are still serialized and validated downstream
            return True, 0


# Module-level singleton
rate_limiter = RateLimiter(redis_client)

# =============================================================================
# Rate Limiter — Redis-Based Sliding Window per Identity and Bucket
# =============================================================================
#
# Implements a sliding window counter using Redis sorted sets (ZSET).
# Each request adds an entry with its timestamp as the score. On each
# check, entries older than the window are pruned and the remaining
# count is compared against the limit.
#
# BUCKETS:
#   default  settings.rate_limit_rpm per 60 s     (all authenticated routes)
#   auth     auth_rate_limit_per_15min per 900 s  (login / refresh)
#   ai       ai_rate_limit_per_15min per 900 s    (LLM-backed TQ routes)
#
# The identity is the API key id, the user id from the token, or the
# client IP for unauthenticated requests.
#
# DESIGN DECISION: Sliding window over fixed window. Fixed windows
# allow burst traffic at window boundaries; sliding windows distribute
# the limit evenly.
#
# DESIGN DECISION: Graceful degradation. If Redis is unavailable,
# rate limiting is bypassed (log a warning, allow the request).
#
# Uses Redis db 2 (db 0/1 reserved for Celery).
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from fastapi import HTTPException

from paas.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitBucket:
    name: str
    limit: int
    window_seconds: int


def bucket_for(name: str, limit_override: int | None = None) -> RateLimitBucket:
    """Resolve a bucket name to its configured limit and window."""
    if name == "auth":
        return RateLimitBucket("auth", settings.auth_rate_limit_per_15min, 15 * 60)
    if name == "ai":
        return RateLimitBucket("ai", settings.ai_rate_limit_per_15min, 15 * 60)
    return RateLimitBucket("default", limit_override or settings.rate_limit_rpm, 60)


# Lazy Redis connection
_redis_client = None


def _get_rate_limit_redis():
    """Lazily create and cache the async Redis client for rate limiting."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        _redis_client = aioredis.from_url(
            settings.rate_limit_redis_url,
            decode_responses=True,
        )
    return _redis_client


async def check_rate_limit(identity: str, bucket: RateLimitBucket) -> None:
    """
    Count this request against `identity` in `bucket`.

    Raises:
        HTTPException 429: Limit reached (includes Retry-After header).

    No-op when:
    - Rate limiting is disabled in settings
    - Redis is unavailable (graceful degradation)
    """
    if not settings.rate_limit_enabled:
        return

    redis_key = f"ratelimit:{bucket.name}:{identity}"

    try:
        r = _get_rate_limit_redis()
        now = time.time()
        window_start = now - bucket.window_seconds

        pipe = r.pipeline()
        # Remove entries outside the window
        pipe.zremrangebyscore(redis_key, 0, window_start)
        # Count entries in the window
        pipe.zcard(redis_key)
        # Add current request (unique member, same-timestamp requests count)
        pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        # Set TTL to auto-cleanup
        pipe.expire(redis_key, bucket.window_seconds + 10)
        results = await pipe.execute()

        current_count = results[1]  # zcard result

        if current_count >= bucket.limit:
            logger.info(
                "Rate limit hit for %s in bucket %s (%d/%d)",
                identity, bucket.name, current_count, bucket.limit,
            )
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Limit: {bucket.limit} requests "
                f"per {bucket.window_seconds} seconds.",
                headers={"Retry-After": str(bucket.window_seconds)},
            )

    except HTTPException:
        raise  # Re-raise 429
    except Exception as e:
        # Redis unavailable: let the request through
        logger.warning(
            "Rate limiter unavailable (Redis error): %s. "
            "Allowing request through.",
            e,
        )

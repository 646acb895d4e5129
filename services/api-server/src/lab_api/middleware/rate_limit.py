"""Per-user launch throttling on a Redis sorted-set sliding window.

Every attempt is recorded under ``ratelimit:<user>:<action>`` with its
timestamp as score. Attempts older than the window are pruned in the same
transaction that counts the survivors, so the count never includes expired
entries.
"""

import secrets
import time
from typing import NamedTuple

from fastapi import HTTPException, status
from redis.asyncio import Redis


class RateLimit(NamedTuple):
    max_requests: int
    window_seconds: int


_LIMITS: dict[str, RateLimit] = {
    "container_launch": RateLimit(max_requests=5, window_seconds=60),
}

_DEFAULT_LIMIT = RateLimit(max_requests=30, window_seconds=60)


def limit_for(action_type: str) -> RateLimit:
    return _LIMITS.get(action_type, _DEFAULT_LIMIT)


async def _record_attempt(redis: Redis, key: str, window_seconds: int) -> int:
    """Prune, count and record one attempt; return the count before recording."""
    now = time.time()
    # Two attempts in the same clock tick must stay distinct members.
    member = f"{now:.6f}-{secrets.token_hex(4)}"

    async with redis.pipeline(transaction=True) as pipe:
        pipe.zremrangebyscore(key, "-inf", now - window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {member: now})
        pipe.expire(key, window_seconds)
        _, prior_attempts, _, _ = await pipe.execute()
    return prior_attempts


async def check_rate_limit(user_id: int, action_type: str, redis: Redis) -> None:
    """Raise HTTP 429 with Retry-After once ``user_id`` exhausts its window."""
    limit = limit_for(action_type)
    prior_attempts = await _record_attempt(
        redis, f"ratelimit:{user_id}:{action_type}", limit.window_seconds
    )
    if prior_attempts >= limit.max_requests:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=(
                f"Limit of {limit.max_requests} per {limit.window_seconds}s "
                "reached; try again later"
            ),
            headers={"Retry-After": str(limit.window_seconds)},
        )

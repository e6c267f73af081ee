"""Rate limiting for /v1 routes.

Two policies:
- "issue"   : POST purchase and redemption writes
- "default" : everything else under /v1

Limits are fixed windows counted in Redis with the INCR-first pattern (the
first INCR in a window sets its TTL). Without Redis the NoOpRateLimiter
reports headers but never rejects.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import redis

logger = logging.getLogger(__name__)

ISSUE_POLICY = "issue"
DEFAULT_POLICY = "default"

ISSUE_PATH_PATTERN = re.compile(r"^/v1(?:/c/[^/]+)?/(?:purchases|redemptions)/?$")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    policy_id: str
    quota: int
    window: int
    remaining: int
    reset: int  # seconds until the window resets


class RateLimiter(Protocol):
    def check_rate_limit(self, key: str, path: str, method: str = "GET") -> RateLimitResult:
        ...


def policy_for(path: str, method: str) -> str:
    if method.upper() == "POST" and ISSUE_PATH_PATTERN.match(path):
        return ISSUE_POLICY
    return DEFAULT_POLICY


class NoOpRateLimiter:
    """Never rejects; reports a full quota."""

    def __init__(self, quota: int = 60, window: int = 60):
        self.quota = quota
        self.window = window

    def check_rate_limit(self, key: str, path: str, method: str = "GET") -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            policy_id=policy_for(path, method),
            quota=self.quota,
            window=self.window,
            remaining=self.quota,
            reset=self.window,
        )


class RedisRateLimiter:
    """Fixed-window limiter backed by Redis.

    Args:
        client: Redis client
        policies: {policy_id: (quota, window_seconds)}; must contain "default"
    """

    def __init__(self, client: redis.Redis, policies: dict[str, tuple[int, int]]):
        if DEFAULT_POLICY not in policies:
            raise ValueError("policies must define a 'default' policy")
        self.redis = client
        self.policies = policies

    def _window_key(self, policy_id: str, key: str, window: int, now: Optional[float] = None) -> str:
        window_index = int((now or time.time()) // window)
        return f"dealcore:ratelimit:{policy_id}:{key}:{window_index}"

    def check_rate_limit(self, key: str, path: str, method: str = "GET") -> RateLimitResult:
        policy_id = policy_for(path, method)
        quota, window = self.policies.get(policy_id, self.policies[DEFAULT_POLICY])
        redis_key = self._window_key(policy_id, key, window)

        try:
            count = self.redis.incr(redis_key)
            if count == 1:
                self.redis.expire(redis_key, window)
            ttl = self.redis.ttl(redis_key)
        except redis.RedisError as e:
            # Fail open: a Redis outage must not take purchases down with it
            logger.warning(
                f"Rate limiter unavailable, allowing request: {e}",
                extra={"event": "ratelimit.redis_error", "policy": policy_id},
            )
            return RateLimitResult(
                allowed=True, policy_id=policy_id, quota=quota, window=window, remaining=quota, reset=window
            )

        reset = ttl if ttl and ttl > 0 else window
        allowed = count <= quota
        if not allowed:
            logger.info(
                "ratelimit.exceeded",
                extra={"event": "ratelimit.exceeded", "policy": policy_id, "count": count, "quota": quota},
            )
        return RateLimitResult(
            allowed=allowed,
            policy_id=policy_id,
            quota=quota,
            window=window,
            remaining=max(0, quota - count),
            reset=reset,
        )

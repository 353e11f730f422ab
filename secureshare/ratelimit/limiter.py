"""
Fixed-window rate limiting on top of the cache's increment-with-expiry.

A window starts at the first counted request and its expiry is set only on
that first increment. When the cache is unreachable every check is allowed.
"""

import logging
import math
import time
from typing import Optional

from secureshare.cache import keys
from secureshare.cache.client import RedisCache
from secureshare.errors import RateLimitedError
from secureshare.models import RateLimitConfig, RateLimitPolicy, RateLimitResult

logger = logging.getLogger(__name__)

AUTHENTICATED_MULTIPLIER = 2


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(self, cache: RedisCache, config: Optional[RateLimitConfig] = None) -> None:
        self.cache = cache
        self.config = config or RateLimitConfig()

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self.config.policies[name]
        except KeyError:
            raise ValueError(f"Unknown rate limit policy: {name}") from None

    def check_limit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request against ``key`` and report whether it is within ``limit``."""
        if not self.config.enabled:
            return RateLimitResult(
                allowed=True, limit=limit, remaining=limit, reset_time=_now_ms()
            )

        count = self.cache.increment(key, window_seconds)
        if count == 0:
            logger.warning("Rate limit backend unavailable for %s, allowing request", key)
            return RateLimitResult(
                allowed=True, limit=limit, remaining=limit, reset_time=_now_ms()
            )

        reset_time = self._reset_time(key, window_seconds)
        allowed = count <= limit
        retry_after = None
        if not allowed:
            retry_after = max(1, math.ceil((reset_time - _now_ms()) / 1000))
            logger.info("Rate limit exceeded for %s (%d/%d)", key, count, limit)

        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_time=reset_time,
            retry_after=retry_after,
        )

    def _reset_time(self, key: str, window_seconds: int) -> int:
        # Approximate by default: now + window, regardless of when the window began
        if self.config.precise_reset:
            remaining = self.cache.ttl(key)
            if remaining is not None:
                return _now_ms() + remaining * 1000
        return _now_ms() + window_seconds * 1000

    def check(self, policy_name: str, identifier: str, multiplier: int = 1) -> RateLimitResult:
        policy = self.policy(policy_name)
        return self.check_limit(
            keys.rate_limit(policy_name, identifier),
            policy.limit * multiplier,
            policy.window_seconds,
        )

    def by_ip(self, policy_name: str, ip_address: str) -> RateLimitResult:
        return self.check(policy_name, f"ip:{ip_address}")

    def by_user(self, policy_name: str, user_id: str, multiplier: int = 1) -> RateLimitResult:
        return self.check(policy_name, f"user:{user_id}", multiplier)

    def by_email(self, policy_name: str, email: str) -> RateLimitResult:
        return self.check(policy_name, f"email:{email.lower()}")

    def composite(
        self, policy_name: str, ip_address: str, user_id: Optional[str] = None
    ) -> RateLimitResult:
        """IP check first; authenticated callers also get a per-user check at twice the limit."""
        ip_result = self.by_ip(policy_name, ip_address)
        if not ip_result.allowed:
            return ip_result

        if user_id:
            user_result = self.by_user(policy_name, user_id, AUTHENTICATED_MULTIPLIER)
            if not user_result.allowed:
                return user_result

        return ip_result

    def burst(
        self, identifier: str, short_term: RateLimitPolicy, long_term: RateLimitPolicy
    ) -> RateLimitResult:
        """Short-window burst protection followed by a long-window sustained limit."""
        short_result = self.check_limit(
            keys.rate_limit("burst", identifier), short_term.limit, short_term.window_seconds
        )
        if not short_result.allowed:
            return short_result

        long_result = self.check_limit(
            keys.rate_limit("sustained", identifier), long_term.limit, long_term.window_seconds
        )
        return short_result if long_result.allowed else long_result

    def get_status(self, policy_name: str, identifier: str) -> RateLimitResult:
        """Report a counter without counting a request."""
        policy = self.policy(policy_name)
        key = keys.rate_limit(policy_name, identifier)

        raw = self.cache.get(key)
        count = int(raw) if raw else 0
        remaining_ttl = self.cache.ttl(key) if count else None
        window_ms = (remaining_ttl if remaining_ttl is not None else policy.window_seconds) * 1000

        return RateLimitResult(
            allowed=count < policy.limit,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            reset_time=_now_ms() + window_ms,
        )

    def reset(self, policy_name: str, identifier: str) -> bool:
        return self.cache.delete(keys.rate_limit(policy_name, identifier))

    def enforce(self, policy_name: str, identifier: str) -> RateLimitResult:
        """Check a policy and raise RateLimitedError when it is exceeded."""
        result = self.check(policy_name, identifier)
        if not result.allowed:
            raise RateLimitedError(policy_name, result.retry_after or 1, result.reset_time)
        return result

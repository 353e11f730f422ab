import logging
import time
from typing import Optional, Sequence

import redis

from secureshare.models import CacheHealth

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis access where every failure degrades to a miss or a no-op.

    The wrapped client must be created with ``decode_responses=True``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 2.0) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache GET failed for %s: %s", key, e)
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            self.client.set(key, value, ex=ttl or None)
            return True
        except redis.RedisError as e:
            logger.warning("Cache SET failed for %s: %s", key, e)
            return False

    def delete(self, *keys: str) -> bool:
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning("Cache DEL failed for %s: %s", ", ".join(keys), e)
            return False

    def exists(self, key: str) -> bool:
        try:
            return self.client.exists(key) == 1
        except redis.RedisError as e:
            logger.warning("Cache EXISTS failed for %s: %s", key, e)
            return False

    def increment(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment a counter, setting its expiry when the counter has none.

        A counter left without expiry by an earlier failed EXPIRE gets one on
        the next increment. Returns 0 when the backend is unreachable.
        """
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.ttl(key)
            count, remaining = pipe.execute()
            if ttl and remaining == -1:
                self.client.expire(key, ttl)
            return count
        except redis.RedisError as e:
            logger.warning("Cache INCR failed for %s: %s", key, e)
            return 0

    def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(self.client.expire(key, ttl))
        except redis.RedisError as e:
            logger.warning("Cache EXPIRE failed for %s: %s", key, e)
            return False

    def ttl(self, key: str) -> Optional[int]:
        """Remaining seconds to live, or None if unknown or without expiry."""
        try:
            remaining = self.client.ttl(key)
        except redis.RedisError as e:
            logger.warning("Cache TTL failed for %s: %s", key, e)
            return None
        return remaining if remaining >= 0 else None

    def multi_get(self, keys: Sequence[str]) -> list[Optional[str]]:
        if not keys:
            return []
        try:
            return list(self.client.mget(keys))
        except redis.RedisError as e:
            logger.warning("Cache MGET failed for %s: %s", ", ".join(keys), e)
            return [None for _ in keys]

    def ping(self) -> CacheHealth:
        start = time.perf_counter()
        try:
            self.client.ping()
        except redis.RedisError as e:
            return CacheHealth(connected=False, error=str(e))
        latency_ms = (time.perf_counter() - start) * 1000
        return CacheHealth(connected=True, latency_ms=round(latency_ms, 2))

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.debug("Closing cache client failed: %s", e)

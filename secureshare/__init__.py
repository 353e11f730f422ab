"""SecureShare - one-time and limited-view secret sharing."""

__version__ = "0.1.0"

from typing import Any, Optional

from secureshare.audit.logger import AuditLogger
from secureshare.cache.client import RedisCache
from secureshare.cache.secrets import SecretCache
from secureshare.config import ConfigManager
from secureshare.models import AppConfig, CacheHealth
from secureshare.ratelimit.limiter import RateLimiter
from secureshare.repository import SecretRepository
from secureshare.storage.base import StorageBackend
from secureshare.utils.utils import get_audit_logger, get_cache, get_storage


class SecureShare:
    """Wires storage, cache, rate limiter, audit logger and repository together."""

    def __init__(
        self,
        storage: StorageBackend,
        cache: RedisCache,
        audit: AuditLogger,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.storage = storage
        self.cache = cache
        self.audit = audit
        self.secret_cache = SecretCache(cache, self.config.cache)
        self.rate_limiter = RateLimiter(cache, self.config.rate_limit)
        self.repository = SecretRepository(
            storage, self.secret_cache, self.rate_limiter, self.audit
        )

    @classmethod
    def from_config(cls, config_manager: Optional[ConfigManager] = None) -> "SecureShare":
        config_manager = config_manager or ConfigManager()
        config = config_manager.load_config()

        storage = get_storage(config_manager, config)
        cache = get_cache(config)
        audit = get_audit_logger(config_manager, config, cache)
        return cls(storage, cache, audit, config)

    def health(self) -> CacheHealth:
        return self.cache.ping()

    def close(self) -> None:
        self.storage.close()
        self.cache.close()

    def __enter__(self) -> "SecureShare":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["SecureShare", "__version__"]

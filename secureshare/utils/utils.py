from typing import Optional

from secureshare.audit.logger import AuditLogger
from secureshare.cache.client import RedisCache
from secureshare.config import ConfigManager
from secureshare.crypto.encryption import Encryptor
from secureshare.crypto.utils import get_or_create_master_key
from secureshare.models import AppConfig
from secureshare.storage.sql import SQLStorage


def create_redis_cache(url: str, socket_timeout: float = 2.0) -> RedisCache:
    return RedisCache.from_url(url, socket_timeout=socket_timeout)


def get_storage(config_manager: ConfigManager, config: AppConfig) -> SQLStorage:
    encryptor = None
    if config.storage.encryption_enabled:
        encryptor = Encryptor(get_or_create_master_key())

    storage = SQLStorage(config_manager.get_database_url(), encryptor)
    storage.initialize()
    return storage


def get_cache(config: AppConfig) -> RedisCache:
    return create_redis_cache(config.cache.url, config.cache.socket_timeout)


def get_audit_logger(
    config_manager: ConfigManager, config: AppConfig, cache: Optional[RedisCache] = None
) -> AuditLogger:
    return AuditLogger(
        config_manager.get_audit_path(),
        enabled=config.audit.enabled,
        cache=cache if config.audit.mirror_to_cache else None,
        cache_ttl=config.cache.access_log_ttl,
    )

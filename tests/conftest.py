import os
import tempfile
from typing import Iterator

import fakeredis
import pytest

from secureshare import SecureShare
from secureshare.audit.logger import AuditLogger
from secureshare.cache.client import RedisCache
from secureshare.crypto.encryption import Encryptor
from secureshare.models import AppConfig, User
from secureshare.repository import SecretRepository
from secureshare.storage.sql import SQLStorage


@pytest.fixture
def temp_db() -> Iterator[str]:
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def storage(temp_db: str) -> Iterator[SQLStorage]:
    storage = SQLStorage(f"sqlite:///{temp_db}", Encryptor())
    storage.initialize()
    yield storage
    storage.close()


@pytest.fixture
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache(redis_client: fakeredis.FakeRedis) -> RedisCache:
    return RedisCache(redis_client)


@pytest.fixture
def audit_path(tmp_path) -> str:
    return str(tmp_path / "audit.log")


@pytest.fixture
def audit(audit_path: str, cache: RedisCache) -> AuditLogger:
    return AuditLogger(audit_path, cache=cache)


@pytest.fixture
def app(storage: SQLStorage, cache: RedisCache, audit: AuditLogger) -> SecureShare:
    return SecureShare(storage, cache, audit, AppConfig())


@pytest.fixture
def repository(app: SecureShare) -> SecretRepository:
    return app.repository


@pytest.fixture
def owner(storage: SQLStorage) -> User:
    return storage.create_user("owner@example.com", "Owner")


@pytest.fixture
def other_user(storage: SQLStorage) -> User:
    return storage.create_user("other@example.com", "Other")

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from secureshare import SecureShare
from secureshare.audit.logger import AuditLogger
from secureshare.cache import keys
from secureshare.cache.client import RedisCache
from secureshare.errors import (
    InvalidPasswordError,
    NotFoundError,
    RateLimitedError,
    SecretExpiredError,
    SecretInactiveError,
    UnauthorizedError,
    ValidationError,
    ViewLimitReachedError,
)
from secureshare.models import AppConfig, SharePermission, User, utcnow
from secureshare.repository import SecretRepository
from secureshare.storage.sql import SQLStorage

IP = "203.0.113.7"


def new_secret(repository: SecretRepository, owner: User, **overrides):
    data = {"title": "prod db", "content": "hunter2", **overrides}
    return repository.create_secret(owner.id, data, ip_address=IP)


class TestCreateAndRead:
    def test_create_persists_and_caches(
        self, repository: SecretRepository, storage: SQLStorage, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner)

        assert secret.current_views == 0
        assert secret.is_active is True
        assert storage.get_secret(secret.id) is not None
        assert cache.get(keys.secret_content(secret.id)) == "hunter2"
        assert json.loads(cache.get(keys.secret_metadata(secret.id)))["title"] == "prod db"

    def test_cached_metadata_never_holds_password(
        self, repository: SecretRepository, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner, password="abc")

        raw = cache.get(keys.secret_metadata(secret.id))

        assert "password" not in json.loads(raw)
        assert json.loads(raw)["has_password"] is True

    @pytest.mark.parametrize("password, has_password", [("abc", True), (None, False), ("", False)])
    def test_round_trip(
        self, repository: SecretRepository, owner: User, password, has_password
    ) -> None:
        written = new_secret(repository, owner, password=password, max_views=3)

        read = repository.get_secret(written.id)

        assert read.to_metadata() == written.to_metadata()
        assert read.content == written.content
        assert read.has_password is has_password

    def test_read_falls_back_to_store_and_fills_cache(
        self, repository: SecretRepository, redis_client, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner)
        redis_client.flushall()

        read = repository.get_secret(secret.id)

        assert read.content == "hunter2"
        assert cache.exists(keys.secret_metadata(secret.id))
        assert cache.exists(keys.secret_content(secret.id))

    def test_metadata_only_hit_is_a_miss_when_content_requested(
        self, repository: SecretRepository, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner)
        cache.delete(keys.secret_content(secret.id))

        assert repository.get_secret(secret.id).content == "hunter2"
        assert repository.get_secret(secret.id, include_content=False).content == ""

    def test_missing_secret_is_not_cached(
        self, repository: SecretRepository, cache: RedisCache
    ) -> None:
        assert repository.get_secret("missing") is None
        assert cache.exists(keys.secret_metadata("missing")) is False

    def test_invalid_input(self, repository: SecretRepository, owner: User) -> None:
        with pytest.raises(ValidationError):
            new_secret(repository, owner, title="")
        with pytest.raises(ValidationError):
            new_secret(repository, owner, max_views=0)
        with pytest.raises(ValidationError):
            new_secret(repository, owner, content_type="VIDEO")

    def test_expiration_preset(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner, expires_in="1h")

        remaining = secret.expires_at - utcnow()
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    def test_unknown_expiration_preset(self, repository: SecretRepository, owner: User) -> None:
        with pytest.raises(ValidationError):
            new_secret(repository, owner, expires_in="2w")

    def test_create_rate_limited(self, repository: SecretRepository, owner: User) -> None:
        for _ in range(10):
            new_secret(repository, owner)

        with pytest.raises(RateLimitedError) as exc_info:
            new_secret(repository, owner)

        assert exc_info.value.retry_after > 0

    def test_create_for_unknown_owner(
        self, repository: SecretRepository, storage: SQLStorage
    ) -> None:
        with pytest.raises(ValidationError):
            repository.create_secret("no-such-user", {"title": "t", "content": "c"})

        assert storage.list_user_secrets("no-such-user") == []

    def test_create_is_audited(
        self, repository: SecretRepository, audit: AuditLogger, owner: User
    ) -> None:
        secret = new_secret(repository, owner)

        entries = audit.get_entries_for_secret(secret.id)

        assert [e.action for e in entries] == ["create"]
        assert entries[0].user_id == owner.id


class TestAccess:
    def test_view_limit_scenario(
        self, repository: SecretRepository, storage: SQLStorage, owner: User
    ) -> None:
        secret = new_secret(repository, owner, max_views=1)

        access = repository.access_secret(secret.id, IP)

        assert access.secret.content == "hunter2"
        assert access.secret.current_views == 1
        assert access.should_delete_after_view is False

        with pytest.raises(ViewLimitReachedError):
            repository.access_secret(secret.id, IP)

        assert storage.get_secret(secret.id).is_active is True

    def test_max_views_boundary(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner, max_views=3)

        for _ in range(3):
            repository.access_secret(secret.id, IP)

        with pytest.raises(ViewLimitReachedError):
            repository.access_secret(secret.id, IP)

    def test_view_limit_uses_store_count_not_cache(
        self, repository: SecretRepository, storage: SQLStorage, owner: User
    ) -> None:
        secret = new_secret(repository, owner, max_views=1)
        # Another process consumed the last view; our cached metadata still says 0
        storage.increment_views(secret.id)

        with pytest.raises(ViewLimitReachedError):
            repository.access_secret(secret.id, IP)

    def test_password_scenario(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner, password="abc")

        with pytest.raises(InvalidPasswordError):
            repository.access_secret(secret.id, IP, password="xyz")

        access = repository.access_secret(secret.id, IP, password="abc")
        assert access.secret.content == "hunter2"
        assert access.secret.current_views == 1

    def test_password_checked_on_cache_hit(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(repository, owner, password="abc")
        repository.get_secret(secret.id)

        with pytest.raises(InvalidPasswordError):
            repository.access_secret(secret.id, IP)

    def test_denied_access_does_not_mutate(
        self, repository: SecretRepository, storage: SQLStorage, owner: User
    ) -> None:
        secret = new_secret(repository, owner, password="abc")

        with pytest.raises(InvalidPasswordError):
            repository.access_secret(secret.id, IP, password="nope")

        assert storage.get_secret(secret.id).current_views == 0
        assert storage.get_access_stats(secret.id).total_accesses == 0

    def test_one_time_secret(
        self, repository: SecretRepository, storage: SQLStorage, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner, delete_after_view=True)

        access = repository.access_secret(secret.id, IP)

        assert access.should_delete_after_view is True
        assert access.secret.content == "hunter2"
        assert storage.get_secret(secret.id).is_active is False
        assert cache.exists(keys.secret_metadata(secret.id)) is False
        assert cache.exists(keys.secret_content(secret.id)) is False

        with pytest.raises(SecretInactiveError):
            repository.access_secret(secret.id, IP)

    def test_expired_regardless_of_password(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(
            repository, owner, password="abc", expires_at=utcnow() + timedelta(minutes=5)
        )
        later = utcnow() + timedelta(minutes=10)

        with pytest.raises(SecretExpiredError):
            repository.access_secret(secret.id, IP, password="abc", now=later)
        with pytest.raises(SecretExpiredError):
            repository.access_secret(secret.id, IP, password="wrong", now=later)

    def test_missing_secret(self, repository: SecretRepository) -> None:
        with pytest.raises(NotFoundError):
            repository.access_secret("missing", IP)

    def test_grant_updates_cached_view_count(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(repository, owner)

        repository.access_secret(secret.id, IP)

        assert repository.cache.get_metadata(secret.id).current_views == 1

    def test_grant_records_access_and_audit(
        self,
        repository: SecretRepository,
        storage: SQLStorage,
        audit: AuditLogger,
        owner: User,
        other_user: User,
    ) -> None:
        secret = new_secret(repository, owner)

        repository.access_secret(secret.id, IP, user_agent="curl/8", user_id=other_user.id)

        stats = storage.get_access_stats(secret.id)
        assert stats.total_accesses == 1
        assert stats.unique_ips == 1
        assert [e.action for e in audit.get_entries_for_secret(secret.id)] == ["view", "create"]

    def test_view_rate_limited_by_ip(self, storage, cache, audit, owner: User) -> None:
        config = AppConfig(
            rate_limit={"policies": {"view_secret": {"limit": 2, "window_seconds": 60}}}
        )
        repository = SecureShare(storage, cache, audit, config).repository
        secret = new_secret(repository, owner)

        repository.access_secret(secret.id, IP)
        repository.access_secret(secret.id, IP)
        with pytest.raises(RateLimitedError):
            repository.access_secret(secret.id, IP)

        repository.access_secret(secret.id, "198.51.100.1")


class TestOwnership:
    def test_update(
        self, repository: SecretRepository, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner)
        repository.get_user_secrets(owner.id)

        updated = repository.update_secret(secret.id, owner.id, {"title": "renamed"})

        assert updated.title == "renamed"
        assert repository.get_secret(secret.id).title == "renamed"
        assert cache.exists(keys.user_secret_list(owner.id)) is False

    @pytest.mark.parametrize("field", ["title", "content", "delete_after_view", "is_public"])
    def test_update_rejects_null_for_required_fields(
        self, repository: SecretRepository, owner: User, field: str
    ) -> None:
        secret = new_secret(repository, owner)

        with pytest.raises(ValidationError):
            repository.update_secret(secret.id, owner.id, {field: None})

        assert repository.access_secret(secret.id, IP).secret.content == "hunter2"

    def test_update_accepts_null_for_optional_fields(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(repository, owner, description="old", max_views=5)

        updated = repository.update_secret(
            secret.id, owner.id, {"description": None, "max_views": None}
        )

        assert updated.description is None
        assert updated.max_views is None

    def test_update_password(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner)

        repository.update_secret(secret.id, owner.id, {"password": "new"})

        assert repository.get_secret(secret.id).has_password is True
        with pytest.raises(InvalidPasswordError):
            repository.access_secret(secret.id, IP)
        assert repository.access_secret(secret.id, IP, password="new").secret.content == "hunter2"

    def test_clear_password(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner, password="abc")

        repository.update_secret(secret.id, owner.id, {"password": ""})

        assert repository.access_secret(secret.id, IP).secret.has_password is False

    def test_non_owner_and_missing_are_indistinguishable(
        self, repository: SecretRepository, owner: User, other_user: User
    ) -> None:
        secret = new_secret(repository, owner)

        with pytest.raises(UnauthorizedError) as not_owner:
            repository.update_secret(secret.id, other_user.id, {"title": "mine now"})
        with pytest.raises(UnauthorizedError) as missing:
            repository.update_secret("missing", other_user.id, {"title": "x"})

        assert str(not_owner.value) == str(missing.value)

        with pytest.raises(UnauthorizedError) as not_owner:
            repository.delete_secret(secret.id, other_user.id)
        with pytest.raises(UnauthorizedError) as missing:
            repository.delete_secret("missing", other_user.id)

        assert str(not_owner.value) == str(missing.value)

    def test_delete(
        self, repository: SecretRepository, storage: SQLStorage, cache: RedisCache, owner: User
    ) -> None:
        secret = new_secret(repository, owner)

        assert repository.delete_secret(secret.id, owner.id) is True

        assert storage.get_secret(secret.id).is_active is False
        assert cache.exists(keys.secret_metadata(secret.id)) is False
        assert repository.get_user_secrets(owner.id) == []
        with pytest.raises(SecretInactiveError):
            repository.access_secret(secret.id, IP)

    def test_update_and_delete_are_audited(
        self, repository: SecretRepository, audit: AuditLogger, owner: User
    ) -> None:
        secret = new_secret(repository, owner)

        repository.update_secret(secret.id, owner.id, {"description": "rotated"})
        repository.delete_secret(secret.id, owner.id)

        entries = audit.get_entries_for_secret(secret.id)
        assert [e.action for e in entries] == ["delete", "update", "create"]
        assert entries[1].metadata == {"fields": ["description"]}


class TestListing:
    def test_lists_are_cached_and_invalidated(
        self, repository: SecretRepository, cache: RedisCache, owner: User
    ) -> None:
        new_secret(repository, owner, title="one")

        assert [s.title for s in repository.get_user_secrets(owner.id)] == ["one"]
        assert cache.exists(keys.user_secret_list(owner.id))

        new_secret(repository, owner, title="two")

        assert {s.title for s in repository.get_user_secrets(owner.id)} == {"one", "two"}

    def test_listing_hides_content(self, repository: SecretRepository, owner: User) -> None:
        new_secret(repository, owner)

        listing = repository.get_user_secrets(owner.id)

        assert not hasattr(listing[0], "content")

    def test_one_time_view_invalidates_owner_list(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(repository, owner, delete_after_view=True)
        repository.get_user_secrets(owner.id)

        repository.access_secret(secret.id, IP)

        assert repository.get_user_secrets(owner.id) == []


class TestSharingAndActivity:
    def test_share_and_list_shared(
        self, repository: SecretRepository, owner: User, other_user: User
    ) -> None:
        secret = new_secret(repository, owner)

        shares = repository.share_secret(
            secret.id, owner.id, [other_user.email, "guest@example.com"], SharePermission.DOWNLOAD
        )

        assert [s.email for s in shares] == [other_user.email, "guest@example.com"]
        assert shares[0].user_id == other_user.id
        assert shares[1].user_id is None

        received = repository.get_shared_secrets(other_user.id)
        assert len(received) == 1
        assert received[0].secret.title == "prod db"

    def test_share_requires_owner(
        self, repository: SecretRepository, owner: User, other_user: User
    ) -> None:
        secret = new_secret(repository, owner)

        with pytest.raises(UnauthorizedError):
            repository.share_secret(secret.id, other_user.id, ["x@example.com"])

    def test_share_requires_email(self, repository: SecretRepository, owner: User) -> None:
        secret = new_secret(repository, owner)

        with pytest.raises(ValidationError):
            repository.share_secret(secret.id, owner.id, [])

    def test_activity(
        self, repository: SecretRepository, owner: User, other_user: User
    ) -> None:
        secret = new_secret(repository, owner)
        repository.access_secret(secret.id, IP, user_id=other_user.id)

        assert len(repository.get_activity(owner.id)) == 1
        assert len(repository.get_activity(other_user.id)) == 1

    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (10, -1)])
    def test_activity_bounds(self, repository: SecretRepository, owner: User, limit, offset) -> None:
        with pytest.raises(ValidationError):
            repository.get_activity(owner.id, limit=limit, offset=offset)

    def test_stats_owner_only(
        self, repository: SecretRepository, owner: User, other_user: User
    ) -> None:
        secret = new_secret(repository, owner)
        repository.access_secret(secret.id, IP)

        assert repository.get_access_stats(secret.id, owner.id).total_accesses == 1
        with pytest.raises(UnauthorizedError):
            repository.get_access_stats(secret.id, other_user.id)


class TestCacheOutage:
    @pytest.fixture
    def repository(self, storage: SQLStorage, audit_path: str) -> SecretRepository:
        client = MagicMock(spec=redis.Redis)
        for name in ("get", "set", "setex", "delete", "incr", "expire", "ttl", "mget"):
            getattr(client, name).side_effect = redis.ConnectionError("down")
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        cache = RedisCache(client)
        return SecureShare(storage, cache, AuditLogger(audit_path, cache=cache)).repository

    def test_everything_works_without_cache(
        self, repository: SecretRepository, owner: User
    ) -> None:
        secret = new_secret(repository, owner, max_views=1)

        assert repository.get_secret(secret.id).content == "hunter2"
        assert [s.id for s in repository.get_user_secrets(owner.id)] == [secret.id]
        assert repository.access_secret(secret.id, IP).secret.current_views == 1
        with pytest.raises(ViewLimitReachedError):
            repository.access_secret(secret.id, IP)

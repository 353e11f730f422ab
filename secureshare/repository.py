"""
Cache-aside secret repository.

The persistent store is the source of truth. Writes go to the store first and
to the cache afterwards; cache failures never fail an operation, they only cost
a store round trip on the next read.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Union

import pydantic

from secureshare.access import evaluate_access
from secureshare.audit.logger import AuditLogger
from secureshare.cache.secrets import SecretCache
from secureshare.crypto.passwords import hash_password
from secureshare.errors import NotFoundError, UnauthorizedError, ValidationError
from secureshare.models import (
    AccessLogEntry,
    AccessStats,
    AuditAction,
    Secret,
    SecretAccess,
    SecretCreate,
    SecretMetadata,
    SecretUpdate,
    SharedSecret,
    SharePermission,
)
from secureshare.ratelimit.limiter import RateLimiter
from secureshare.storage.base import StorageBackend

logger = logging.getLogger(__name__)

MAX_ACTIVITY_PAGE = 100


def _validate(model: type[pydantic.BaseModel], data: Union[pydantic.BaseModel, dict[str, Any]]):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(str(e)) from e


class SecretRepository:
    def __init__(
        self,
        storage: StorageBackend,
        cache: SecretCache,
        rate_limiter: RateLimiter,
        audit: AuditLogger,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.audit = audit

    def get_secret(self, secret_id: str, include_content: bool = True) -> Optional[Secret]:
        """Read a secret through the cache.

        A cache hit never carries the password hash; callers that need to check
        a password must read the store.
        """
        metadata, content = self.cache.get(secret_id, include_content)
        if metadata is not None and (not include_content or content is not None):
            return Secret.from_cache(metadata, content)

        secret = self.storage.get_secret(secret_id)
        if secret is None:
            return None

        self._cache_secret(secret)
        return secret

    def create_secret(
        self,
        user_id: str,
        data: Union[SecretCreate, dict[str, Any]],
        ip_address: Optional[str] = None,
    ) -> Secret:
        data = _validate(SecretCreate, data)
        self.rate_limiter.enforce("create_secret", f"user:{user_id}")

        password_hash = hash_password(data.password) if data.password else None
        secret = self.storage.create_secret(user_id, data, password_hash)

        self._cache_secret(secret)
        self.cache.invalidate_user_secrets(user_id)
        self.audit.log_access(
            secret.id, user_id, AuditAction.CREATE.value, {"ip_address": ip_address}
        )

        logger.info("Created secret %s for user %s", secret.id, user_id)
        return secret

    def access_secret(
        self,
        secret_id: str,
        ip_address: str,
        user_agent: str = "",
        user_id: Optional[str] = None,
        password: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SecretAccess:
        """View a secret: rate limit, evaluate access, count the view.

        Two viewers racing for the last permitted view can both be admitted; the
        gate reads the store right before the atomic increment but does not lock.
        """
        self.rate_limiter.enforce("view_secret", f"ip:{ip_address}")

        if self.get_secret(secret_id, include_content=True) is None:
            raise NotFoundError()

        current = self.storage.get_secret(secret_id)
        if current is None:
            raise NotFoundError()

        decision = evaluate_access(current, password, now)
        if not decision.granted:
            logger.info("Denied access to secret %s: %s", secret_id, decision.reason.value)
            decision.raise_for_denial()

        views = self.storage.increment_views(secret_id)
        self.storage.add_access_log(
            secret_id, user_id=user_id, ip_address=ip_address, user_agent=user_agent
        )
        self.audit.log_access(
            secret_id,
            user_id,
            AuditAction.VIEW.value,
            {"ip_address": ip_address, "user_agent": user_agent},
        )

        if decision.deactivate:
            current = self.storage.deactivate_secret(secret_id)
            self.cache.delete_secret(secret_id)
            self.cache.invalidate_user_secrets(current.created_by_id)
        else:
            metadata = current.to_metadata().model_copy(update={"current_views": views})
            self.cache.set_metadata(metadata)

        logger.info("Granted access to secret %s (view %d)", secret_id, views)
        return SecretAccess(
            secret=current.model_copy(update={"current_views": views}),
            should_delete_after_view=decision.deactivate,
        )

    def update_secret(
        self,
        secret_id: str,
        user_id: str,
        updates: Union[SecretUpdate, dict[str, Any]],
    ) -> Secret:
        updates = _validate(SecretUpdate, updates)
        self._owned_secret(secret_id, user_id)

        changes = updates.changes()
        if "password" in changes:
            password = changes.pop("password")
            changes["password_hash"] = hash_password(password) if password else None

        updated = self.storage.update_secret(secret_id, changes)

        self._cache_secret(updated)
        self.cache.invalidate_user_secrets(user_id)
        self.audit.log_access(
            secret_id, user_id, AuditAction.UPDATE.value, {"fields": sorted(updates.changes())}
        )

        logger.info("Updated secret %s", secret_id)
        return updated

    def delete_secret(self, secret_id: str, user_id: str) -> bool:
        self._owned_secret(secret_id, user_id)

        self.storage.deactivate_secret(secret_id)

        self.cache.delete_secret(secret_id)
        self.cache.invalidate_user_secrets(user_id)
        self.audit.log_access(secret_id, user_id, AuditAction.DELETE.value)

        logger.info("Deleted secret %s", secret_id)
        return True

    def get_user_secrets(self, user_id: str) -> list[SecretMetadata]:
        cached = self.cache.get_user_secrets(user_id)
        if cached is not None:
            return cached

        secrets = [secret.to_metadata() for secret in self.storage.list_user_secrets(user_id)]
        self.cache.set_user_secrets(user_id, secrets)
        return secrets

    def share_secret(
        self,
        secret_id: str,
        user_id: str,
        emails: list[str],
        permission: SharePermission = SharePermission.VIEW,
    ) -> list[SharedSecret]:
        if not emails:
            raise ValidationError("At least one email is required")

        self.rate_limiter.enforce("share_secret", f"user:{user_id}")
        self._owned_secret(secret_id, user_id)

        shares = []
        for email in emails:
            recipient = self.storage.get_user_by_email(email)
            shares.append(
                self.storage.share_secret(
                    secret_id, email, recipient.id if recipient else None, permission
                )
            )

        self.audit.log_access(
            secret_id,
            user_id,
            AuditAction.SHARE.value,
            {"emails": [s.email for s in shares], "permission": permission.value},
        )
        return shares

    def get_shared_secrets(self, user_id: str) -> list[SharedSecret]:
        user = self.storage.get_user(user_id)
        return self.storage.list_shared_with(user_id, user.email if user else None)

    def get_activity(self, user_id: str, limit: int = 10, offset: int = 0) -> list[AccessLogEntry]:
        if not 1 <= limit <= MAX_ACTIVITY_PAGE:
            raise ValidationError(f"limit must be between 1 and {MAX_ACTIVITY_PAGE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        return self.storage.list_activity(user_id, limit=limit, offset=offset)

    def get_access_stats(self, secret_id: str, user_id: str) -> AccessStats:
        self._owned_secret(secret_id, user_id)
        return self.storage.get_access_stats(secret_id)

    def _owned_secret(self, secret_id: str, user_id: str) -> Secret:
        secret = self.get_secret(secret_id, include_content=False)
        if secret is None or secret.created_by_id != user_id:
            logger.debug("Ownership check failed for secret %s", secret_id)
            raise UnauthorizedError()
        return secret

    def _cache_secret(self, secret: Secret) -> None:
        self.cache.set_metadata(secret.to_metadata())
        self.cache.set_content(secret.id, secret.content)

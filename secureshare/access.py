"""
Access-control evaluation for a single read of a secret.

Checks run in a fixed order and the first failure wins: expiry, view limit,
active flag, then password. Time and counter checks come before the password
check so an exhausted secret never reveals whether a password was right.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from secureshare.crypto.passwords import verify_password
from secureshare.errors import AccessDenialReason, AccessDeniedError
from secureshare.models import Secret, to_naive_utc, utcnow


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: Optional[AccessDenialReason] = None
    deactivate: bool = False

    def raise_for_denial(self) -> None:
        if not self.granted and self.reason is not None:
            raise AccessDeniedError.for_reason(self.reason)


def _deny(reason: AccessDenialReason) -> AccessDecision:
    return AccessDecision(granted=False, reason=reason)


def evaluate_access(
    secret: Secret, password: Optional[str] = None, now: Optional[datetime] = None
) -> AccessDecision:
    """Decide whether ``secret`` may be read and which mutations follow a grant.

    ``secret`` must carry the stored password hash and a view count read from
    the persistent store, not from the cache.
    """
    now = to_naive_utc(now) if now is not None else utcnow()

    if secret.expires_at is not None and now > secret.expires_at:
        return _deny(AccessDenialReason.EXPIRED)

    if secret.max_views is not None and secret.current_views >= secret.max_views:
        return _deny(AccessDenialReason.VIEW_LIMIT_REACHED)

    if not secret.is_active:
        return _deny(AccessDenialReason.INACTIVE)

    if secret.password_hash is not None and not verify_password(password, secret.password_hash):
        return _deny(AccessDenialReason.INVALID_PASSWORD)

    return AccessDecision(granted=True, deactivate=secret.delete_after_view)

"""
Error hierarchy for SecureShare.

Every error raised to callers derives from SecureShareError. Access denials keep
their specific reason so the presentation layer can show the right message.
"""

from enum import Enum
from typing import Optional


class SecureShareError(Exception):
    """Base error for all SecureShare failures."""


class NotFoundError(SecureShareError):
    def __init__(self, message: str = "Secret not found") -> None:
        super().__init__(message)


class AccessDenialReason(str, Enum):
    EXPIRED = "expired"
    VIEW_LIMIT_REACHED = "view_limit_reached"
    INACTIVE = "inactive"
    INVALID_PASSWORD = "invalid_password"


class AccessDeniedError(SecureShareError):
    """A read attempt was refused by the access-control checks."""

    reason: AccessDenialReason
    default_message = "Access denied"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @staticmethod
    def for_reason(reason: AccessDenialReason) -> "AccessDeniedError":
        return _DENIAL_ERRORS[reason]()


class SecretExpiredError(AccessDeniedError):
    reason = AccessDenialReason.EXPIRED
    default_message = "Secret has expired"


class ViewLimitReachedError(AccessDeniedError):
    reason = AccessDenialReason.VIEW_LIMIT_REACHED
    default_message = "Secret has reached maximum views"


class SecretInactiveError(AccessDeniedError):
    reason = AccessDenialReason.INACTIVE
    default_message = "Secret is not active"


class InvalidPasswordError(AccessDeniedError):
    reason = AccessDenialReason.INVALID_PASSWORD
    default_message = "Invalid password"


_DENIAL_ERRORS: dict[AccessDenialReason, type[AccessDeniedError]] = {
    AccessDenialReason.EXPIRED: SecretExpiredError,
    AccessDenialReason.VIEW_LIMIT_REACHED: ViewLimitReachedError,
    AccessDenialReason.INACTIVE: SecretInactiveError,
    AccessDenialReason.INVALID_PASSWORD: InvalidPasswordError,
}


class UnauthorizedError(SecureShareError):
    """Ownership check failed.

    Raised for missing secrets as well, so callers cannot probe for existence.
    """

    def __init__(self, message: str = "Secret not found or unauthorized") -> None:
        super().__init__(message)


class RateLimitedError(SecureShareError):
    def __init__(self, policy: str, retry_after: int, reset_time: int) -> None:
        self.policy = policy
        self.retry_after = retry_after
        self.reset_time = reset_time
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")


class BackendUnavailableError(SecureShareError):
    def __init__(self, backend: str, cause: Optional[Exception] = None) -> None:
        self.backend = backend
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{backend} is unavailable{detail}")


class ValidationError(SecureShareError):
    """User input failed validation."""


class EncryptionError(SecureShareError):
    pass

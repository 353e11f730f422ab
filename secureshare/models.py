from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ContentType(str, Enum):
    TEXT = "TEXT"
    FILE = "FILE"


class SharePermission(str, Enum):
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    EDIT = "EDIT"


class AuditAction(str, Enum):
    CREATE = "create"
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"
    SHARE = "share"


# Expiry presets offered when creating a secret
EXPIRATION_PRESETS: dict[str, timedelta] = {
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "3h": timedelta(hours=3),
    "6h": timedelta(hours=6),
    "12h": timedelta(hours=12),
    "24h": timedelta(hours=24),
    "3d": timedelta(days=3),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_EXPIRATION = "24h"


class User(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class SecretMetadata(BaseModel):
    """Cacheable projection of a secret: everything except content and password."""

    id: str
    title: str
    description: Optional[str] = None
    content_type: ContentType = ContentType.TEXT
    file_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    delete_after_view: bool = False
    is_public: bool = False
    max_views: Optional[int] = None
    current_views: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by_id: str
    has_password: bool = False


class Secret(SecretMetadata):
    content: str = ""
    password_hash: Optional[str] = Field(default=None, exclude=True, repr=False)

    def to_metadata(self) -> SecretMetadata:
        return SecretMetadata(**self.model_dump(exclude={"content"}))

    @classmethod
    def from_cache(cls, metadata: SecretMetadata, content: Optional[str]) -> "Secret":
        return cls(**metadata.model_dump(), content=content or "")


class SecretCreate(BaseModel):
    title: str = Field(..., min_length=1, description="Human readable title")
    description: Optional[str] = None
    content: str = Field(..., min_length=1, description="Secret content")
    content_type: ContentType = ContentType.TEXT
    file_name: Optional[str] = None
    password: Optional[str] = Field(default=None, description="Optional access password")
    expires_at: Optional[datetime] = None
    expires_in: Optional[str] = Field(default=None, description="Expiration preset such as 24h")
    delete_after_view: bool = False
    is_public: bool = False
    max_views: Optional[int] = Field(default=None, ge=1, description="Maximum number of views")

    model_config = {"extra": "forbid"}

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @field_validator("password")
    @classmethod
    def _empty_password_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @model_validator(mode="after")
    def _apply_expiration_preset(self) -> "SecretCreate":
        if self.expires_in is None:
            return self
        if self.expires_in not in EXPIRATION_PRESETS:
            raise ValueError(
                f"Unknown expiration preset {self.expires_in!r}, "
                f"expected one of: {', '.join(EXPIRATION_PRESETS)}"
            )
        if self.expires_at is not None:
            raise ValueError("Use either expires_at or expires_in, not both")
        self.expires_at = utcnow() + EXPIRATION_PRESETS[self.expires_in]
        return self


class SecretUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    content: Optional[str] = Field(default=None, min_length=1)
    password: Optional[str] = None
    expires_at: Optional[datetime] = None
    delete_after_view: Optional[bool] = None
    is_public: Optional[bool] = None
    max_views: Optional[int] = Field(default=None, ge=1)

    model_config = {"extra": "forbid"}

    @field_validator("title", "content", "delete_after_view", "is_public")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not set to null")
        return value

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SecretAccess(BaseModel):
    secret: Secret
    should_delete_after_view: bool = False


class AccessLogEntry(BaseModel):
    id: str
    secret_id: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    accessed_at: datetime = Field(default_factory=utcnow)
    secret_title: Optional[str] = None


class SharedSecret(BaseModel):
    id: str
    secret_id: str
    user_id: Optional[str] = None
    email: str
    permission: SharePermission = SharePermission.VIEW
    shared_at: datetime = Field(default_factory=utcnow)
    accessed_at: Optional[datetime] = None
    secret: Optional[SecretMetadata] = None


class AccessStats(BaseModel):
    secret_id: str
    total_accesses: int = 0
    unique_ips: int = 0
    last_accessed_at: Optional[datetime] = None
    current_views: int = 0


class AuditEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    secret_id: str = Field(..., description="Secret the action applies to")
    user_id: Optional[str] = Field(default=None, description="Acting user, if authenticated")
    action: str = Field(..., description="Action performed (create, view, update, ...)")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional context")


class RateLimitPolicy(BaseModel):
    limit: int = Field(..., ge=1, description="Requests allowed per window")
    window_seconds: int = Field(..., ge=1, description="Fixed window length")


class RateLimitResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_time: int = Field(..., description="Epoch milliseconds when the window resets")
    retry_after: Optional[int] = Field(default=None, description="Seconds until retry, if denied")


class CacheHealth(BaseModel):
    connected: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None


def default_rate_limit_policies() -> dict[str, RateLimitPolicy]:
    return {
        # authentication
        "login": RateLimitPolicy(limit=5, window_seconds=15 * 60),
        "register": RateLimitPolicy(limit=3, window_seconds=60 * 60),
        "email_verification": RateLimitPolicy(limit=3, window_seconds=5 * 60),
        "password_reset": RateLimitPolicy(limit=3, window_seconds=60 * 60),
        # secrets
        "create_secret": RateLimitPolicy(limit=10, window_seconds=60 * 60),
        "view_secret": RateLimitPolicy(limit=50, window_seconds=60 * 60),
        "share_secret": RateLimitPolicy(limit=20, window_seconds=60 * 60),
        # general API
        "api_general": RateLimitPolicy(limit=100, window_seconds=60 * 60),
        "api_strict": RateLimitPolicy(limit=20, window_seconds=60 * 60),
    }


class StorageConfig(BaseModel):
    path: str = Field(default=".secureshare/store.db", description="Path to SQLite file")
    url: Optional[str] = Field(default=None, description="SQLAlchemy URL, overrides path")
    encryption_enabled: bool = Field(default=True, description="Encrypt content at rest")


class CacheConfig(BaseModel):
    url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    socket_timeout: float = Field(default=2.0, description="Socket timeout in seconds")
    secret_metadata_ttl: int = Field(default=60 * 30, ge=1)
    secret_content_ttl: int = Field(default=60 * 10, ge=1)
    user_list_ttl: int = Field(default=60 * 60, ge=1)
    access_log_ttl: int = Field(default=60 * 60 * 24, ge=1)

    @model_validator(mode="after")
    def _content_expires_first(self) -> "CacheConfig":
        if self.secret_content_ttl >= self.secret_metadata_ttl:
            raise ValueError("secret_content_ttl must be shorter than secret_metadata_ttl")
        return self


class RateLimitConfig(BaseModel):
    enabled: bool = Field(default=True, description="Whether rate limiting is enforced")
    precise_reset: bool = Field(
        default=False, description="Report reset time from the counter TTL instead of now + window"
    )
    policies: dict[str, RateLimitPolicy] = Field(default_factory=default_rate_limit_policies)

    @field_validator("policies")
    @classmethod
    def _merge_with_defaults(cls, value: dict[str, RateLimitPolicy]) -> dict[str, RateLimitPolicy]:
        merged = default_rate_limit_policies()
        merged.update(value)
        return merged


class AuditConfig(BaseModel):
    enabled: bool = Field(default=True, description="Whether audit logging is enabled")
    path: str = Field(default=".secureshare/audit.log", description="Path to audit log")
    mirror_to_cache: bool = Field(default=True, description="Also record entries in the cache")


class AppConfig(BaseModel):
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    log_level: str = Field(default="WARNING", description="Root log level")

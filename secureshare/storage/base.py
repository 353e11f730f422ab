from abc import ABC, abstractmethod
from typing import Any, Optional

from secureshare.models import (
    AccessLogEntry,
    AccessStats,
    Secret,
    SecretCreate,
    SharedSecret,
    SharePermission,
    User,
)


class StorageBackend(ABC):
    """Durable record of users, secrets, shares and access logs.

    Lookups return None on absence; mutations of a missing row raise NotFoundError.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Initialize storage backend (create tables, files, etc.)."""
        pass

    @abstractmethod
    def create_user(self, email: str, name: Optional[str] = None) -> User:
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def create_secret(
        self, owner_id: str, data: SecretCreate, password_hash: Optional[str] = None
    ) -> Secret:
        """Persist a new, active secret with zero views.

        Args:
            owner_id: Id of the owning user
            data: Validated creation input (its plaintext password is ignored)
            password_hash: Hashed password, if the secret is password protected

        Returns:
            Created Secret
        """
        pass

    @abstractmethod
    def get_secret(self, secret_id: str) -> Optional[Secret]:
        """Retrieve a secret by id.

        Args:
            secret_id: Secret id

        Returns:
            Secret if found, None otherwise
        """
        pass

    @abstractmethod
    def list_user_secrets(self, user_id: str) -> list[Secret]:
        """List active secrets owned by a user, newest first."""
        pass

    @abstractmethod
    def update_secret(self, secret_id: str, changes: dict[str, Any]) -> Secret:
        """Apply field changes to a secret.

        Args:
            secret_id: Secret id
            changes: Column values to set; ``content`` is plaintext

        Returns:
            Updated Secret

        Raises:
            NotFoundError: If the secret does not exist
        """
        pass

    @abstractmethod
    def increment_views(self, secret_id: str) -> int:
        """Atomically add one to the view counter.

        Returns:
            The new view count

        Raises:
            NotFoundError: If the secret does not exist
        """
        pass

    @abstractmethod
    def deactivate_secret(self, secret_id: str) -> Secret:
        """Soft delete a secret. Deactivation is terminal."""
        pass

    @abstractmethod
    def add_access_log(
        self,
        secret_id: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        email: Optional[str] = None,
    ) -> AccessLogEntry:
        pass

    @abstractmethod
    def list_activity(self, user_id: str, limit: int = 10, offset: int = 0) -> list[AccessLogEntry]:
        """Access logs made by a user or against secrets the user owns, newest first."""
        pass

    @abstractmethod
    def get_access_stats(self, secret_id: str) -> AccessStats:
        pass

    @abstractmethod
    def share_secret(
        self,
        secret_id: str,
        email: str,
        user_id: Optional[str] = None,
        permission: SharePermission = SharePermission.VIEW,
    ) -> SharedSecret:
        """Record a share; an existing share for the same email is returned unchanged."""
        pass

    @abstractmethod
    def list_shared_with(self, user_id: str, email: Optional[str] = None) -> list[SharedSecret]:
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage backend connections."""
        pass

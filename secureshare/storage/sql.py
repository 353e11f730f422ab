import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event, func, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from secureshare.crypto.encryption import Encryptor
from secureshare.errors import BackendUnavailableError, NotFoundError, ValidationError
from secureshare.models import (
    AccessLogEntry,
    AccessStats,
    ContentType,
    Secret,
    SecretCreate,
    SecretMetadata,
    SharedSecret,
    SharePermission,
    User,
    utcnow,
)
from secureshare.storage.base import StorageBackend
from secureshare.storage.models import (
    AccessLogModel,
    Base,
    SecretModel,
    SharedSecretModel,
    UserModel,
    new_id,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "title",
    "description",
    "content",
    "password_hash",
    "expires_at",
    "delete_after_view",
    "is_public",
    "max_views",
}


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SQLStorage(StorageBackend):
    def __init__(self, url: str, encryptor: Optional[Encryptor] = None) -> None:
        self.url = url
        self.encryptor = encryptor

        self.engine = create_engine(url)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_foreign_keys)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self) -> None:
        with self._guard():
            Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as e:
            logger.error("Database operation failed: %s", e)
            raise BackendUnavailableError("database", e) from e
        except IntegrityError as e:
            logger.info("Rejected write violating a constraint: %s", e.orig)
            raise ValidationError(f"Constraint violated: {e.orig}") from e

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._guard(), self.SessionLocal() as session:
            yield session

    def _seal(self, secret_id: str, content: str) -> str:
        if self.encryptor is None:
            return content
        return self.encryptor.encrypt(content, secret_id.encode("utf-8"))

    def _unseal(self, secret_id: str, stored: str) -> str:
        if self.encryptor is None:
            return stored
        return self.encryptor.decrypt(stored, secret_id.encode("utf-8"))

    def _to_metadata(self, model: SecretModel) -> SecretMetadata:
        return SecretMetadata(
            id=model.id,
            title=model.title,
            description=model.description,
            content_type=ContentType(model.content_type),
            file_name=model.file_name,
            expires_at=model.expires_at,
            delete_after_view=model.delete_after_view,
            is_public=model.is_public,
            max_views=model.max_views,
            current_views=model.current_views,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
            created_by_id=model.created_by_id,
            has_password=model.password_hash is not None,
        )

    def _to_secret(self, model: SecretModel) -> Secret:
        return Secret(
            **self._to_metadata(model).model_dump(),
            content=self._unseal(model.id, model.content),
            password_hash=model.password_hash,
        )

    @staticmethod
    def _to_user(model: UserModel) -> User:
        return User(id=model.id, email=model.email, name=model.name, created_at=model.created_at)

    def create_user(self, email: str, name: Optional[str] = None) -> User:
        with self._session() as session:
            user = UserModel(id=new_id(), email=email.lower(), name=name)
            session.add(user)
            session.commit()
            return self._to_user(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as session:
            user = session.get(UserModel, user_id)
            return self._to_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            stmt = select(UserModel).where(UserModel.email == email.lower())
            user = session.execute(stmt).scalar_one_or_none()
            return self._to_user(user) if user else None

    def create_secret(
        self, owner_id: str, data: SecretCreate, password_hash: Optional[str] = None
    ) -> Secret:
        secret_id = new_id()
        with self._session() as session:
            model = SecretModel(
                id=secret_id,
                title=data.title,
                description=data.description,
                content=self._seal(secret_id, data.content),
                content_type=data.content_type.value,
                file_name=data.file_name,
                password_hash=password_hash,
                expires_at=data.expires_at,
                max_views=data.max_views,
                current_views=0,
                delete_after_view=data.delete_after_view,
                is_public=data.is_public,
                is_active=True,
                created_by_id=owner_id,
            )
            session.add(model)
            session.commit()

            secret = self._to_metadata(model)
            return Secret(**secret.model_dump(), content=data.content, password_hash=password_hash)

    def get_secret(self, secret_id: str) -> Optional[Secret]:
        with self._session() as session:
            model = session.get(SecretModel, secret_id)
            if not model:
                return None
            return self._to_secret(model)

    def list_user_secrets(self, user_id: str) -> list[Secret]:
        with self._session() as session:
            stmt = (
                select(SecretModel)
                .where(SecretModel.created_by_id == user_id)
                .where(SecretModel.is_active.is_(True))
                .order_by(SecretModel.created_at.desc())
            )
            return [self._to_secret(model) for model in session.execute(stmt).scalars().all()]

    def update_secret(self, secret_id: str, changes: dict[str, Any]) -> Secret:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self._session() as session:
            model = session.get(SecretModel, secret_id)
            if not model:
                raise NotFoundError(f"Secret {secret_id} not found")

            for field, value in changes.items():
                if field == "content":
                    value = self._seal(secret_id, value)
                setattr(model, field, value)
            model.updated_at = utcnow()
            session.commit()

            return self._to_secret(model)

    def increment_views(self, secret_id: str) -> int:
        with self._session() as session:
            result = session.execute(
                update(SecretModel)
                .where(SecretModel.id == secret_id)
                .values(current_views=SecretModel.current_views + 1)
            )
            if result.rowcount == 0:
                session.rollback()
                raise NotFoundError(f"Secret {secret_id} not found")
            session.commit()

            stmt = select(SecretModel.current_views).where(SecretModel.id == secret_id)
            return session.execute(stmt).scalar_one()

    def deactivate_secret(self, secret_id: str) -> Secret:
        with self._session() as session:
            model = session.get(SecretModel, secret_id)
            if not model:
                raise NotFoundError(f"Secret {secret_id} not found")

            model.is_active = False
            model.updated_at = utcnow()
            session.commit()
            return self._to_secret(model)

    def add_access_log(
        self,
        secret_id: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        email: Optional[str] = None,
    ) -> AccessLogEntry:
        with self._session() as session:
            entry = AccessLogModel(
                id=new_id(),
                secret_id=secret_id,
                user_id=user_id,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                accessed_at=utcnow(),
            )
            session.add(entry)
            session.commit()

            return AccessLogEntry(
                id=entry.id,
                secret_id=entry.secret_id,
                user_id=entry.user_id,
                email=entry.email,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                accessed_at=entry.accessed_at,
            )

    def list_activity(self, user_id: str, limit: int = 10, offset: int = 0) -> list[AccessLogEntry]:
        with self._session() as session:
            stmt = (
                select(AccessLogModel, SecretModel.title)
                .join(SecretModel, SecretModel.id == AccessLogModel.secret_id)
                .where(
                    or_(
                        AccessLogModel.user_id == user_id,
                        SecretModel.created_by_id == user_id,
                    )
                )
                .order_by(AccessLogModel.accessed_at.desc())
                .offset(offset)
                .limit(limit)
            )

            return [
                AccessLogEntry(
                    id=log.id,
                    secret_id=log.secret_id,
                    user_id=log.user_id,
                    email=log.email,
                    ip_address=log.ip_address,
                    user_agent=log.user_agent,
                    accessed_at=log.accessed_at,
                    secret_title=title,
                )
                for log, title in session.execute(stmt).all()
            ]

    def get_access_stats(self, secret_id: str) -> AccessStats:
        with self._session() as session:
            model = session.get(SecretModel, secret_id)
            if not model:
                raise NotFoundError(f"Secret {secret_id} not found")

            stmt = select(
                func.count(AccessLogModel.id),
                func.count(func.distinct(AccessLogModel.ip_address)),
                func.max(AccessLogModel.accessed_at),
            ).where(AccessLogModel.secret_id == secret_id)
            total, unique_ips, last_accessed_at = session.execute(stmt).one()

            return AccessStats(
                secret_id=secret_id,
                total_accesses=total,
                unique_ips=unique_ips,
                last_accessed_at=last_accessed_at,
                current_views=model.current_views,
            )

    def share_secret(
        self,
        secret_id: str,
        email: str,
        user_id: Optional[str] = None,
        permission: SharePermission = SharePermission.VIEW,
    ) -> SharedSecret:
        email = email.lower()
        with self._session() as session:
            secret = session.get(SecretModel, secret_id)
            if not secret:
                raise NotFoundError(f"Secret {secret_id} not found")

            stmt = (
                select(SharedSecretModel)
                .where(SharedSecretModel.secret_id == secret_id)
                .where(SharedSecretModel.email == email)
            )
            share = session.execute(stmt).scalar_one_or_none()

            if share is None:
                share = SharedSecretModel(
                    id=new_id(),
                    secret_id=secret_id,
                    user_id=user_id,
                    email=email,
                    permission=permission.value,
                    shared_at=utcnow(),
                )
                session.add(share)
                session.commit()

            return self._to_share(share, secret)

    def list_shared_with(self, user_id: str, email: Optional[str] = None) -> list[SharedSecret]:
        with self._session() as session:
            match = SharedSecretModel.user_id == user_id
            if email:
                match = or_(match, SharedSecretModel.email == email.lower())

            stmt = (
                select(SharedSecretModel, SecretModel)
                .join(SecretModel, SecretModel.id == SharedSecretModel.secret_id)
                .where(match)
                .order_by(SharedSecretModel.shared_at.desc())
            )
            return [self._to_share(share, secret) for share, secret in session.execute(stmt).all()]

    def _to_share(self, share: SharedSecretModel, secret: SecretModel) -> SharedSecret:
        return SharedSecret(
            id=share.id,
            secret_id=share.secret_id,
            user_id=share.user_id,
            email=share.email,
            permission=SharePermission(share.permission),
            shared_at=share.shared_at,
            accessed_at=share.accessed_at,
            secret=self._to_metadata(secret),
        )

    def close(self) -> None:
        self.engine.dispose()

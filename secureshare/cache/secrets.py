import json
import logging
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from secureshare.cache import keys
from secureshare.cache.client import RedisCache
from secureshare.models import CacheConfig, SecretMetadata

logger = logging.getLogger(__name__)

_metadata_list = TypeAdapter(list[SecretMetadata])


class SecretCache:
    """Secret metadata, secret content and per-user listings on top of RedisCache."""

    def __init__(self, cache: RedisCache, config: Optional[CacheConfig] = None) -> None:
        self.cache = cache
        self.config = config or CacheConfig()

    def get(
        self, secret_id: str, include_content: bool = True
    ) -> tuple[Optional[SecretMetadata], Optional[str]]:
        """Fetch metadata and, if requested, content in one round trip."""
        wanted = [keys.secret_metadata(secret_id)]
        if include_content:
            wanted.append(keys.secret_content(secret_id))

        values = self.cache.multi_get(wanted)
        metadata = self._parse_metadata(wanted[0], values[0])
        content = values[1] if include_content else None
        return metadata, content

    def get_metadata(self, secret_id: str) -> Optional[SecretMetadata]:
        key = keys.secret_metadata(secret_id)
        return self._parse_metadata(key, self.cache.get(key))

    def set_metadata(self, metadata: SecretMetadata) -> bool:
        return self.cache.set(
            keys.secret_metadata(metadata.id),
            metadata.model_dump_json(),
            self.config.secret_metadata_ttl,
        )

    def get_content(self, secret_id: str) -> Optional[str]:
        return self.cache.get(keys.secret_content(secret_id))

    def set_content(self, secret_id: str, content: str) -> bool:
        return self.cache.set(
            keys.secret_content(secret_id), content, self.config.secret_content_ttl
        )

    def delete_secret(self, secret_id: str) -> bool:
        return self.cache.delete(keys.secret_metadata(secret_id), keys.secret_content(secret_id))

    def get_user_secrets(self, user_id: str) -> Optional[list[SecretMetadata]]:
        key = keys.user_secret_list(user_id)
        raw = self.cache.get(key)
        if raw is None:
            return None
        try:
            return _metadata_list.validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            self.cache.delete(key)
            return None

    def set_user_secrets(self, user_id: str, secrets: list[SecretMetadata]) -> bool:
        payload = json.dumps([s.model_dump(mode="json") for s in secrets])
        return self.cache.set(keys.user_secret_list(user_id), payload, self.config.user_list_ttl)

    def invalidate_user_secrets(self, user_id: str) -> bool:
        return self.cache.delete(keys.user_secret_list(user_id))

    def _parse_metadata(self, key: str, raw: Optional[str]) -> Optional[SecretMetadata]:
        if raw is None:
            return None
        try:
            return SecretMetadata.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            self.cache.delete(key)
            return None

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional

from secureshare.cache import keys
from secureshare.cache.client import RedisCache
from secureshare.models import AuditEntry

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only audit trail of secret operations.

    Entries are JSON lines in ``log_path``; with a cache attached each entry is
    also written under the access-log namespace with ``cache_ttl``. Failures are
    logged and never raised.
    """

    def __init__(
        self,
        log_path: str,
        enabled: bool = True,
        cache: Optional[RedisCache] = None,
        cache_ttl: int = 60 * 60 * 24,
    ) -> None:
        self.log_path = log_path
        self.enabled = enabled
        self.cache = cache
        self.cache_ttl = cache_ttl

        log_dir = os.path.dirname(log_path)
        if log_dir:
            Path(log_dir).mkdir(parents=True, exist_ok=True)

    def log_access(
        self,
        secret_id: str,
        user_id: Optional[str] = None,
        action: str = "view",
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        if not self.enabled:
            return

        entry = AuditEntry(
            secret_id=secret_id,
            user_id=user_id,
            action=action,
            metadata=metadata or {},
        )
        line = entry.model_dump_json()

        try:
            with open(self.log_path, "a") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("Could not write audit entry for %s: %s", secret_id, e)

        if self.cache is not None:
            key = keys.access_log(secret_id, int(time.time() * 1000))
            self.cache.set(key, line, self.cache_ttl)

    def get_recent_entries(self, limit: int = 100) -> list[AuditEntry]:
        return self._read(limit=limit)

    def get_entries_for_secret(self, secret_id: str, limit: int = 100) -> list[AuditEntry]:
        return self._read(limit=limit, secret_id=secret_id)

    def _read(self, limit: int, secret_id: Optional[str] = None) -> list[AuditEntry]:
        if not os.path.exists(self.log_path):
            return []

        try:
            with open(self.log_path, "r") as f:
                lines = f.readlines()
        except OSError as e:
            logger.warning("Could not read audit log %s: %s", self.log_path, e)
            return []

        entries = []
        for line in reversed(lines):
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if secret_id is not None and data.get("secret_id") != secret_id:
                continue
            entries.append(AuditEntry(**data))
            if len(entries) >= limit:
                break

        return entries

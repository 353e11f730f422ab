import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from secureshare.models import AppConfig

logger = logging.getLogger(__name__)

ENV_DATABASE_URL = "SECURESHARE_DATABASE_URL"
ENV_REDIS_URL = "SECURESHARE_REDIS_URL"
ENV_LOG_LEVEL = "SECURESHARE_LOG_LEVEL"


class ConfigManager:

    DEFAULT_CONFIG_DIR = ".secureshare"
    DEFAULT_CONFIG_FILE = "config.yaml"

    def __init__(self, config_dir: str = DEFAULT_CONFIG_DIR) -> None:
        self.config_dir = config_dir

    def initialize(self) -> None:
        Path(self.config_dir).mkdir(parents=True, exist_ok=True)

        if self.config_path is None or not os.path.exists(self.config_path):
            self.save_config(AppConfig(), Path(self.config_dir) / self.DEFAULT_CONFIG_FILE)

    @property
    def config_path(self) -> Optional[Path]:
        root = self.find_root()
        if root is None:
            return None
        return root / self.config_dir / self.DEFAULT_CONFIG_FILE

    def find_root(self) -> Optional[Path]:
        current = Path.cwd()
        while True:
            if (current / self.config_dir).is_dir():
                return current
            if current == current.parent:
                return None
            current = current.parent

    def load_config(self) -> AppConfig:
        config = self._load_file()

        if os.getenv(ENV_DATABASE_URL):
            config.storage.url = os.environ[ENV_DATABASE_URL]
        if os.getenv(ENV_REDIS_URL):
            config.cache.url = os.environ[ENV_REDIS_URL]
        if os.getenv(ENV_LOG_LEVEL):
            config.log_level = os.environ[ENV_LOG_LEVEL].upper()

        return config

    def _load_file(self) -> AppConfig:
        path = self.config_path
        if path is None or not path.exists():
            return AppConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
            return AppConfig(**data) if data else AppConfig()
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            return AppConfig()

    def save_config(self, config: AppConfig, path: Optional[Path] = None) -> None:
        path = path or self.config_path
        with open(path, "w") as f:
            yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)

    def _resolve(self, configured: str) -> str:
        if os.path.isabs(configured):
            return configured
        root = self.find_root() or Path.cwd()
        return str(root / self.config_dir / os.path.basename(configured))

    def get_database_url(self) -> str:
        config = self.load_config()
        if config.storage.url:
            return config.storage.url
        db_path = self._resolve(config.storage.path)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_audit_path(self) -> str:
        return self._resolve(self.load_config().audit.path)

"""Configuration handling for pylistsync.

Settings are read from environment variables first and then from a simple
``KEY=value`` file stored in ``~/.config/pylistsync/config``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:54321/rest/v1"
DEFAULT_DB_NAME = "listsync.db"

ENV_API_URL = "LISTSYNC_API_URL"
ENV_API_KEY = "LISTSYNC_API_KEY"
ENV_DB_PATH = "LISTSYNC_DB_PATH"


@dataclass
class SyncSettings:
    """Tunables for the sync engine."""

    max_retries: int = 5
    """Push attempts before a mutation record is abandoned"""

    batch_size: int = 50
    """Maximum rows fetched per entity kind in one pull pass"""

    poll_interval: float = 30.0
    """Seconds between periodic sync triggers and change polls"""

    persist_watermarks: bool = False
    """Keep pull watermarks across restarts instead of rescanning"""


class Config:
    """Configuration manager for pylistsync."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file. Defaults to
                ~/.config/pylistsync
        """
        self.config_dir = config_dir or Path.home() / ".config" / "pylistsync"
        self.config_file = self.config_dir / "config"
        self._file_values = self._load_file()

    def _load_file(self) -> dict[str, str]:
        """Read KEY=value pairs from the config file."""
        values: dict[str, str] = {}
        if not self.config_file.exists():
            return values

        try:
            with open(self.config_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    values[key.strip()] = value.strip().strip('"').strip("'")
        except OSError as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")
        return values

    def _save_value(self, key: str, value: str) -> None:
        """Persist a single key to the config file."""
        self._file_values[key] = value
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            for k, v in sorted(self._file_values.items()):
                f.write(f"{k}={v}\n")
        # Credentials live in this file
        self.config_file.chmod(0o600)

    def _get(self, key: str) -> Optional[str]:
        return os.environ.get(key) or self._file_values.get(key)

    @property
    def api_key(self) -> Optional[str]:
        """API key from environment or config file."""
        return self._get(ENV_API_KEY)

    @property
    def api_url(self) -> str:
        """Base URL of the REST backend."""
        return self._get(ENV_API_URL) or DEFAULT_API_URL

    def is_configured(self) -> bool:
        """Check whether an API key is available."""
        return bool(self.api_key)

    def save_api_key(self, api_key: str) -> None:
        """Store the API key in the config file."""
        self._save_value(ENV_API_KEY, api_key)

    def save_api_url(self, api_url: str) -> None:
        """Store the backend URL in the config file."""
        self._save_value(ENV_API_URL, api_url.rstrip("/"))

    def get_config_path(self) -> Path:
        """Return the config file path."""
        return self.config_file

    def get_db_path(self) -> Path:
        """Return the path of the local SQLite database."""
        configured = self._get(ENV_DB_PATH)
        if configured:
            return Path(configured).expanduser()
        return self.config_dir / DEFAULT_DB_NAME

    def get_state_dir(self) -> Path:
        """Return the directory used for persisted sync state."""
        return self.config_dir / "sync_state"


config = Config()

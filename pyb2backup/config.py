"""Configuration management for pyb2backup."""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.backblazeb2.com"
DEFAULT_SMB_DOMAIN = "WORKGROUP"


class Config:
    """Reads settings from the environment and an optional config file.

    The config file lives at ``~/.config/pyb2backup/config`` and holds
    ``KEY=value`` lines using the same names as the environment variables.
    Environment variables take precedence over the file.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path.home() / ".config" / "pyb2backup"
        self.config_file = self.config_dir / "config"
        self._file_values: Optional[dict[str, str]] = None

    def _load_file(self) -> dict[str, str]:
        if self._file_values is not None:
            return self._file_values

        values: dict[str, str] = {}
        if self.config_file.exists():
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
        self._file_values = values
        return values

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a setting, environment first, then the config file."""
        value = os.environ.get(key)
        if value:
            return value
        return self._load_file().get(key, default)

    @property
    def application_key_id(self) -> Optional[str]:
        return self.get("B2_APPLICATION_KEY_ID")

    @property
    def application_key(self) -> Optional[str]:
        return self.get("B2_APPLICATION_KEY")

    @property
    def api_url(self) -> str:
        return self.get("B2_API_URL", DEFAULT_API_URL) or DEFAULT_API_URL

    @property
    def smb_domain(self) -> str:
        domain = self.get("PYB2BACKUP_SMB_DOMAIN", DEFAULT_SMB_DOMAIN)
        return domain or DEFAULT_SMB_DOMAIN

    def is_configured(self) -> bool:
        """True when both B2 credentials are available without CLI input."""
        return bool(self.application_key_id and self.application_key)

    def get_config_path(self) -> Path:
        return self.config_file


config = Config()

"""User configuration for pymirror.

Settings are read from ``config.json`` in the user's config directory
(``~/.config/pymirror`` unless ``PYMIRROR_CONFIG_DIR`` is set). Command
line options and their environment variables take precedence over the
values stored here.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .exceptions import MirrorConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "PYMIRROR_CONFIG_DIR"
CONFIG_FILE_NAME = "config.json"


class Config:
    """Lazily loaded user configuration."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding ``config.json``. Defaults to
                ``$PYMIRROR_CONFIG_DIR`` or ``~/.config/pymirror``.
        """
        self._config_dir = config_dir
        self._data: Optional[dict[str, Any]] = None

    def get_config_dir(self) -> Path:
        if self._config_dir is not None:
            return self._config_dir
        env_dir = os.environ.get(CONFIG_DIR_ENV)
        if env_dir:
            return Path(env_dir)
        return Path.home() / ".config" / "pymirror"

    def get_config_path(self) -> Path:
        return self.get_config_dir() / CONFIG_FILE_NAME

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        config_path = self.get_config_path()
        if not config_path.exists():
            logger.debug(f"No config file at {config_path}")
            self._data = {}
            return self._data

        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise MirrorConfigError(
                f"Failed to read config file `{config_path}`: {e}"
            ) from e

        if not isinstance(data, dict):
            raise MirrorConfigError(
                f"Config file `{config_path}` must contain a JSON object"
            )
        self._data = data
        return self._data

    def get_workers(self) -> Optional[int]:
        """Return the configured worker count, if any.

        Raises:
            MirrorConfigError: If the stored value is not a positive integer
        """
        value = self._load().get("workers")
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise MirrorConfigError(
                f"Invalid `workers` value in {self.get_config_path()}: {value!r}"
            )
        return value

    def get_fallback_copy(self) -> bool:
        """Return whether failed filters should fall back to a verbatim copy."""
        value = self._load().get("fallback_copy", False)
        if not isinstance(value, bool):
            raise MirrorConfigError(
                f"Invalid `fallback_copy` value in {self.get_config_path()}: "
                f"{value!r}"
            )
        return value

    def reload(self) -> None:
        """Forget cached values so the next access re-reads the file."""
        self._data = None


config = Config()

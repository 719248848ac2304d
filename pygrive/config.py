"""Credential and configuration storage for pygrive."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .exceptions import GriveConfigError

logger = logging.getLogger(__name__)

# Per working copy metadata directory, never synced
METADATA_DIR_NAME = ".pygrive"
STATE_FILE_NAME = "state.json"
LOCK_FILE_NAME = "lock"
IGNORE_FILE_NAME = ".pygriveignore"
PARTIAL_SUFFIX = ".pygrive-part"

DEFAULT_REDIRECT_URI = "http://localhost:8080/"

_ENV_OVERRIDES = {
    "id": "PYGRIVE_CLIENT_ID",
    "secret": "PYGRIVE_CLIENT_SECRET",
    "refresh_token": "PYGRIVE_REFRESH_TOKEN",
}


class Config:
    """Persistent OAuth2 credentials.

    Values live in ``<config_dir>/config`` as JSON. Environment variables
    ``PYGRIVE_CLIENT_ID``, ``PYGRIVE_CLIENT_SECRET`` and
    ``PYGRIVE_REFRESH_TOKEN`` take precedence over the file.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file. Defaults to
                ``$PYGRIVE_CONFIG_DIR`` or ~/.config/pygrive
        """
        if config_dir is None:
            env_dir = os.environ.get("PYGRIVE_CONFIG_DIR")
            config_dir = (
                Path(env_dir) if env_dir else Path.home() / ".config" / "pygrive"
            )
        self.config_dir = Path(config_dir)
        self._values: dict[str, str] = {}
        self._load()

    def get_config_path(self) -> Path:
        """Return the path of the config file."""
        return self.config_dir / "config"

    def _load(self) -> None:
        path = self.get_config_path()
        if not path.exists():
            logger.debug(f"No config file at {path}")
            return
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GriveConfigError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise GriveConfigError(f"Config file {path} must contain a JSON object")
        self._values = {k: str(v) for k, v in data.items() if v is not None}

    def get(self, key: str) -> Optional[str]:
        """Get a value, honouring environment overrides."""
        env_name = _ENV_OVERRIDES.get(key)
        if env_name and os.environ.get(env_name):
            return os.environ[env_name]
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        """Set a value in memory; call :meth:`save` to persist it."""
        self._values[key] = value

    def save(self) -> None:
        """Write the config file with owner-only permissions."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, sort_keys=True)
        path.chmod(0o600)
        logger.debug(f"Saved config to {path}")

    @property
    def client_id(self) -> Optional[str]:
        return self.get("id")

    @property
    def client_secret(self) -> Optional[str]:
        return self.get("secret")

    @property
    def refresh_token(self) -> Optional[str]:
        return self.get("refresh_token")

    @property
    def redirect_uri(self) -> str:
        return self.get("redirect_uri") or DEFAULT_REDIRECT_URI

    def is_configured(self) -> bool:
        """Check whether enough credentials exist to sync."""
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def require_credentials(self) -> tuple[str, str, str]:
        """Return (client_id, client_secret, refresh_token).

        Raises:
            GriveConfigError: If any of them is missing
        """
        if not self.is_configured():
            raise GriveConfigError(
                "Credentials not configured. Run 'pygrive auth' first "
                "if this is the first time you access your Google Drive."
            )
        return (
            self.client_id or "",
            self.client_secret or "",
            self.refresh_token or "",
        )

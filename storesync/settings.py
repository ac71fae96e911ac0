"""Connection settings loaded from the environment."""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILES = (".env.local", ".env")


def load_env_files(env_file: Optional[str] = None) -> List[Path]:
    """
    Load dotenv files into ``os.environ`` without overriding real variables.

    Args:
        env_file: Explicit file to load; defaults to .env.local then .env

    Returns:
        The files that were found and loaded
    """
    candidates = [env_file] if env_file else list(DEFAULT_ENV_FILES)
    loaded = []
    for name in candidates:
        path = Path(name)
        if path.is_file():
            load_dotenv(path, override=False)
            loaded.append(path)
            logger.debug(f"Loaded environment from {path}")
    return loaded


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value.strip()
    return None


def _strip_outer_quotes(text: str) -> str:
    """Undo the extra quoting some .env editors put around a JSON value."""
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1].replace('\\"', '"').replace("\\'", "'")
    return text


@dataclass
class MigrationSettings:
    """Source and target connection settings."""
    firebase_database_url: Optional[str] = None
    firebase_storage_bucket: Optional[str] = None
    firebase_project_id: Optional[str] = None
    firebase_auth_token: Optional[str] = None
    firebase_service_account_key: Optional[str] = None

    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_storage_bucket: str = "files"

    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MigrationSettings":
        """Build settings from environment variables (VITE_ prefixes accepted)."""
        env = os.environ if env is None else env

        database_url = _first(env, "FIREBASE_DATABASE_URL", "VITE_FIREBASE_DATABASE_URL")
        if database_url:
            database_url = database_url.rstrip("/")

        timeout = _first(env, "STORESYNC_REQUEST_TIMEOUT")

        return cls(
            firebase_database_url=database_url,
            firebase_storage_bucket=_first(env, "FIREBASE_STORAGE_BUCKET", "VITE_FIREBASE_STORAGE_BUCKET"),
            firebase_project_id=_first(env, "FIREBASE_PROJECT_ID", "VITE_FIREBASE_PROJECT_ID"),
            firebase_auth_token=_first(env, "FIREBASE_AUTH_TOKEN", "FIREBASE_DATABASE_SECRET"),
            firebase_service_account_key=_first(env, "FIREBASE_SERVICE_ACCOUNT_KEY"),
            supabase_url=_first(env, "SUPABASE_URL", "VITE_SUPABASE_URL"),
            supabase_service_key=_first(env, "SUPABASE_SERVICE_ROLE_KEY"),
            supabase_storage_bucket=_first(env, "SUPABASE_STORAGE_BUCKET") or "files",
            request_timeout=float(timeout) if timeout else 30.0,
        )

    def service_account_info(self) -> Optional[Dict[str, Any]]:
        """
        Parse FIREBASE_SERVICE_ACCOUNT_KEY.

        Returns:
            The service account key as a dict, or None when not set

        Raises:
            ConfigurationError: if the value is not a JSON object or lacks
                private_key or client_email
        """
        if not self.firebase_service_account_key:
            return None

        text = _strip_outer_quotes(self.firebase_service_account_key.strip())
        try:
            info = json.loads(text)
        except ValueError as e:
            raise ConfigurationError(
                f"FIREBASE_SERVICE_ACCOUNT_KEY does not contain valid JSON: {e}"
            ) from e

        if not isinstance(info, dict):
            raise ConfigurationError("FIREBASE_SERVICE_ACCOUNT_KEY must be a JSON object")

        missing = [name for name in ("private_key", "client_email") if not info.get(name)]
        if missing:
            raise ConfigurationError(
                f"FIREBASE_SERVICE_ACCOUNT_KEY missing required fields ({', '.join(missing)})"
            )
        return info

    def validate(
        self,
        require_source: bool = True,
        require_target: bool = True
    ) -> None:
        """
        Check that mandatory settings are present.

        A service account key is parsed here as well; without an explicit
        database URL, its project_id yields the default
        https://<project_id>.firebaseio.com.

        Raises:
            ConfigurationError: listing every missing variable
        """
        missing = []

        if require_source:
            info = self.service_account_info()
            if info and not self.firebase_database_url and info.get("project_id"):
                self.firebase_database_url = f"https://{info['project_id']}.firebaseio.com"
            if info and not self.firebase_project_id:
                self.firebase_project_id = info.get("project_id")

        if require_source and not self.firebase_database_url:
            missing.append("FIREBASE_DATABASE_URL (or VITE_FIREBASE_DATABASE_URL)")

        if require_target:
            if not self.supabase_url:
                missing.append("SUPABASE_URL (or VITE_SUPABASE_URL)")
            if not self.supabase_service_key:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")

        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )

    def describe(self) -> Dict[str, Optional[str]]:
        """Non-secret settings for logging."""
        return {
            "firebase_database_url": self.firebase_database_url,
            "firebase_storage_bucket": self.firebase_storage_bucket,
            "supabase_url": self.supabase_url,
            "supabase_storage_bucket": self.supabase_storage_bucket,
        }

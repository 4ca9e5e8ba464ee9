"""
Application Configuration.

Pydantic Settings model for the lending portal client.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import ClassVar, Optional

from pydantic_settings import BaseSettings
from pydantic import Field, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend REST service ---
    API_BASE_URL: str = "http://localhost:5002/api"
    HTTP_TIMEOUT_S: float = Field(default=15.0, gt=0)
    HTTP_CONNECT_TIMEOUT_S: float = Field(default=5.0, gt=0)

    # --- Local durable storage ---
    LOCAL_DB_PATH: Path = Path("portal_local.db")
    SALT_FILE_NAME: str = ".portal_token_salt"

    # Name of the single durable entry holding the bearer token.  ClassVar so
    # Pydantic-settings does not try to load it from the environment.
    TOKEN_STORAGE_KEY: ClassVar[str] = "authToken"

    # --- Session lifecycle ---
    # Local auto-logout horizon.  ``0`` disables the local age check and
    # leaves expiry entirely to the server.
    SESSION_MAX_AGE_S: int = Field(default=3600, ge=0)

    # --- Logging ---
    LOG_FILE: str = "portal.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when configuration falls back to defaults."""
        _log = logging.getLogger("portal.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.API_BASE_URL:
            _log.warning(
                "API_BASE_URL is empty; every backend call will fail "
                "until it is configured."
            )

        return self

    @property
    def session_max_age_seconds(self) -> Optional[int]:
        """Return the local session age limit, or ``None`` when disabled."""
        return self.SESSION_MAX_AGE_S or None


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern to avoid the lock overhead on the fast path while remaining
    thread-safe during first initialisation.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance

"""
Application Configuration.

Pydantic Settings model for the Thai Craft authentication core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings
from pydantic import model_validator

_PRODUCTION_SERVER_URL: str = "https://learn-thai-api.onrender.com"
_DEVELOPMENT_SERVER_URL: str = "http://localhost:5001"


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Environment ---
    APP_ENV: Literal["development", "production"] = "development"
    APP_VERSION: str = "0.0.0"

    # --- Auth server ---
    # Empty means "derive from APP_ENV" (see ``server_url``).
    SERVER_URL: str = ""
    HTTP_TIMEOUT_S: float = 15.0

    # --- Wallet (Mobile Wallet Adapter) ---
    SOLANA_CLUSTER: str = ""
    APP_IDENTITY_NAME: str = "Thai Craft"
    APP_IDENTITY_URI: str = "https://appname.onrender.com"
    APP_IDENTITY_ICON: str = "./assets/icon.png"
    WALLET_TIMEOUT_S: float = 60.0

    # --- Sign-in message ---
    SIGN_IN_DOMAIN: str = ""
    SIGN_IN_STATEMENT: str = "Sign in to Thai Craft"
    SIGN_IN_URI: str = ""

    # --- Session ---
    SESSION_TIMEOUT_HOURS: float = 24.0

    # --- Local store ---
    STORE_PATH: str = "thaicraft_local.db"
    ENCRYPT_CREDENTIALS: bool = True

    # --- Logging ---
    LOG_FILE: str = "thaicraft.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when running on implicit defaults.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        which in development points the client at a localhost server.
        """
        _log = logging.getLogger("thaicraft.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SERVER_URL:
            _log.warning(
                "SERVER_URL is empty; using the %s default %s.",
                self.APP_ENV,
                self.server_url,
            )

        return self

    # --- Derived values ---

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def server_url(self) -> str:
        """Auth server base URL without a trailing slash."""
        if self.SERVER_URL:
            return self.SERVER_URL.rstrip("/")
        return _PRODUCTION_SERVER_URL if self.is_production else _DEVELOPMENT_SERVER_URL

    @property
    def cluster(self) -> str:
        """Solana cluster the wallet is asked to authorise against."""
        if self.SOLANA_CLUSTER:
            return self.SOLANA_CLUSTER
        return "mainnet-beta" if self.is_production else "devnet"

    @property
    def sign_in_domain(self) -> str:
        if self.SIGN_IN_DOMAIN:
            return self.SIGN_IN_DOMAIN
        return "yourserver.onrender.com" if self.is_production else "localhost"

    @property
    def sign_in_uri(self) -> str:
        if self.SIGN_IN_URI:
            return self.SIGN_IN_URI
        return "https://yourserver.onrender.com" if self.is_production else "http://localhost"

    @property
    def session_timeout_ms(self) -> int:
        """Rolling inactivity timeout in epoch milliseconds."""
        return int(self.SESSION_TIMEOUT_HOURS * 60 * 60 * 1000)


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

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance

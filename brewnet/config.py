"""
Application Configuration.

Pydantic Settings model for the BrewNet authentication engine.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings

from brewnet.models.enums import IdentityMode


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase (remote identity backend) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # Which identity backend the orchestrator talks to.  The fallback
    # decision is configuration, never inferred from caught exceptions.
    IDENTITY_MODE: IdentityMode = IdentityMode.REMOTE_WITH_LOCAL_FALLBACK

    # --- Local persistence ---
    LOCAL_DB_PATH: str = "brewnet_local.db"
    SESSION_SALT_PATH: str = str(Path.home() / ".brewnet_session_salt")
    SESSION_KDF_ITERATIONS: int = 600_000
    LOCAL_PASSWORD_KDF_ITERATIONS: int = 600_000

    # --- OAuth provider (LinkedIn) ---
    OAUTH_CLIENT_ID: str = ""
    OAUTH_REDIRECT_URI: str = ""
    OAUTH_SCOPE: str = "openid profile email"
    OAUTH_APP_SCHEME: str = "brewnet"
    OAUTH_AUTHORIZATION_ENDPOINT: str = "https://www.linkedin.com/oauth/v2/authorization"
    OAUTH_PROFILE_ENDPOINT: str = (
        "https://api.linkedin.com/v2/me?projection=(id,localizedFirstName,"
        "localizedLastName,localizedHeadline,"
        "profilePicture(displayImage~:playableStreams))"
    )
    OAUTH_EMAIL_ENDPOINT: str = (
        "https://api.linkedin.com/v2/emailAddress?q=members"
        "&projection=(elements*(handle~))"
    )

    # --- Backend edge functions (relative to SUPABASE_URL) ---
    TOKEN_EXCHANGE_PATH: str = "/functions/v1/linkedin-exchange"
    PROFILE_IMPORT_PATH: str = "/functions/v1/linkedin-import"

    # --- Network ---
    HTTP_CONNECT_TIMEOUT_S: float = 5.0
    HTTP_READ_TIMEOUT_S: float = 15.0

    # --- Entitlements ---
    TRIAL_DAYS: int = 7
    DEFAULT_LIKES: int = 10

    # --- Logging ---
    LOG_FILE: str = "brewnet.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit startup warnings for missing remote or OAuth settings.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        A remote identity mode without Supabase credentials can only ever
        produce network errors, so operators are told up front.
        """
        _log = logging.getLogger("brewnet.config")

        if not self.SUPABASE_URL and self.IDENTITY_MODE != IdentityMode.LOCAL:
            _log.warning(
                "SUPABASE_URL is empty but IDENTITY_MODE is '%s'; remote "
                "identity calls will fail as network errors.",
                self.IDENTITY_MODE,
            )

        if not self.OAUTH_CLIENT_ID or not self.OAUTH_REDIRECT_URI:
            _log.warning(
                "OAUTH_CLIENT_ID or OAUTH_REDIRECT_URI is empty; profile "
                "import will be rejected by the provider.",
            )

        return self

    # --- Derived endpoints ---
    @property
    def token_exchange_url(self) -> str:
        """Absolute URL of the backend token-exchange function."""
        return f"{self.SUPABASE_URL.rstrip('/')}{self.TOKEN_EXCHANGE_PATH}"

    @property
    def profile_import_url(self) -> str:
        """Absolute URL of the backend profile-import function."""
        return f"{self.SUPABASE_URL.rstrip('/')}{self.PROFILE_IMPORT_PATH}"

    @property
    def http_timeout(self) -> tuple[float, float]:
        """``(connect, read)`` timeout pair for ``requests`` calls."""
        return (self.HTTP_CONNECT_TIMEOUT_S, self.HTTP_READ_TIMEOUT_S)


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

    Prefer direct constructor injection of ``AppConfig``; this factory
    exists for modules (such as the logger) that are created before the
    composition root runs.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance

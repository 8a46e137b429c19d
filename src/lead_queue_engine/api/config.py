"""Environment-based configuration for the API service."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class Settings:
    """API configuration loaded from environment variables."""

    def __init__(self):
        self.host = os.getenv("LQE_API_HOST", "0.0.0.0")
        self.port = int(os.getenv("LQE_API_PORT", "8000"))
        self.db_path = os.getenv(
            "LQE_DATABASE_PATH",
            str(Path.home() / ".lead-queue-engine" / "queue.db"),
        )
        self.config_path = os.getenv("LQE_CONFIG_PATH") or None
        self.sweeper_enabled = (
            os.getenv("LQE_SWEEPER_ENABLED", "true").lower() == "true"
        )
        self.webhook_url = os.getenv("LQE_WEBHOOK_URL") or None
        self.debug = os.getenv("LQE_ENGINE_ENV", "production") != "production"

        # Shared secret for write endpoints; empty disables the check
        self.api_secret = os.getenv("LQE_API_SECRET", "")
        if not self.api_secret and not self.debug:
            logger.warning("LQE_API_SECRET is not set; admin endpoints are unauthenticated")

        self.allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "LQE_ALLOWED_ORIGINS",
                "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read the environment (used after changing env vars in tests)."""
    global _settings
    _settings = Settings()
    return _settings


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()

"""
=============================================================================
CONFIG.PY - Environment-driven settings
=============================================================================

Settings are read once from the process environment (after loading a local
.env file) and passed explicitly to the app factory and the sync client.

ENVIRONMENT VARIABLES:
----------------------
- DATABASE_URL: async SQLAlchemy URL
  (default: sqlite+aiosqlite:///./twin_dashboard.db)
- APP_ENV: reported by /api/health (default: production)
- HOST / PORT: bind address for `python -m twin_dashboard serve`
- REALTIME_ENABLED: whether clients should try the /ws channel before
  falling back to polling (default: true)
- ELEVENLABS_API_KEY: enables real speech synthesis
- CORS_ORIGINS: comma separated list, "*" by default
- POLL_INTERVAL: seconds between fallback polls (default: 5)
- MAX_RECONNECT_ATTEMPTS: failed connects before polling (default: 10)
- SEED_ON_STARTUP: create the seven personas at startup (default: true)
- LOG_LEVEL: loguru level (default: INFO)
"""

import os
import sys
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv
from loguru import logger

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./twin_dashboard.db"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class Settings:
    """Runtime configuration for the dashboard server and clients."""
    database_url: str = DEFAULT_DATABASE_URL
    environment: str = "production"
    host: str = "127.0.0.1"
    port: int = 8000
    realtime_enabled: bool = True
    elevenlabs_api_key: str = ""
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    poll_interval: float = 5.0
    max_reconnect_attempts: int = 10
    seed_on_startup: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from environment variables (and .env if present)."""
        if load_dotenv_file:
            load_dotenv(override=False)

        origins = os.getenv("CORS_ORIGINS", "*")

        return cls(
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            environment=os.getenv("APP_ENV", "production"),
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "8000")),
            realtime_enabled=_env_bool("REALTIME_ENABLED", True),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            poll_interval=float(os.getenv("POLL_INTERVAL", "5")),
            max_reconnect_attempts=int(os.getenv("MAX_RECONNECT_ATTEMPTS", "10")),
            seed_on_startup=_env_bool("SEED_ON_STARTUP", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="{time:HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
    )

"""Environment-backed settings.

Values are read once per process by :func:`get_settings`; tests call
:func:`reset_settings` after monkeypatching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_SCOPES = "openid email profile https://www.googleapis.com/auth/business.manage"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    database_url: str = "sqlite+aiosqlite:///./reviewsync.db"

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    google_scopes: str = DEFAULT_SCOPES
    google_api_timeout: float = 30.0
    google_mock_post: bool = False

    oauth_state_secret: str = ""
    jwt_secret: str = ""
    settings_url: str = "http://localhost:3000/settings"
    tokens_encryption_key: str = ""
    business_timezone: str = "UTC"

    max_generations_per_reply: int = 5
    max_generations_per_business_daily: int = 100

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    log_level: str = "INFO"

    @property
    def is_dev(self) -> bool:
        return self.env.lower() in {"dev", "development", "local", "test"}

    @property
    def scope_list(self) -> list[str]:
        return [s for s in self.google_scopes.split() if s]


def _load() -> Settings:
    jwt_secret = os.getenv("JWT_SECRET", "")
    return Settings(
        env=os.getenv("ENV", "dev").strip() or "dev",
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./reviewsync.db"),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI", ""),
        google_scopes=os.getenv("GOOGLE_SCOPES", DEFAULT_SCOPES),
        google_api_timeout=_env_float("GOOGLE_API_TIMEOUT", 30.0),
        google_mock_post=_env_bool("GOOGLE_MOCK_POST"),
        # State signing falls back to the session secret, as the callback
        # only needs a server-held key.
        oauth_state_secret=os.getenv("OAUTH_STATE_SECRET", "") or jwt_secret,
        jwt_secret=jwt_secret,
        settings_url=os.getenv("SETTINGS_URL", "http://localhost:3000/settings"),
        tokens_encryption_key=os.getenv("TOKENS_ENCRYPTION_KEY", ""),
        business_timezone=os.getenv("BUSINESS_TIMEZONE", "UTC"),
        max_generations_per_reply=_env_int("MAX_GENERATIONS_PER_REPLY", 5),
        max_generations_per_business_daily=_env_int("MAX_GENERATIONS_PER_BUSINESS_DAILY", 100),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load()


def reset_settings() -> None:
    get_settings.cache_clear()


def validate_google_config(settings: Settings | None = None) -> list[str]:
    """Return the names of missing Google OAuth variables (empty when complete)."""
    s = settings or get_settings()
    required = {
        "GOOGLE_CLIENT_ID": s.google_client_id,
        "GOOGLE_CLIENT_SECRET": s.google_client_secret,
        "GOOGLE_REDIRECT_URI": s.google_redirect_uri,
        "OAUTH_STATE_SECRET": s.oauth_state_secret,
    }
    return [name for name, value in required.items() if not value]

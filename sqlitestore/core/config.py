"""
Store configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
"""

import json
from typing import Annotated, List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from sqlitestore.sessions import DEFAULT_MAX_AGE


class Settings(BaseSettings):
    """Session store settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings
    DATABASE_URL: str = "sqlite:///./data/sessions.db"
    SESSION_TABLE: str = "sessions"

    # Session cookie settings
    SESSION_NAME: str = "session"
    SESSION_PATH: str = "/"
    SESSION_DOMAIN: Optional[str] = None
    SESSION_MAX_AGE: int = DEFAULT_MAX_AGE
    SESSION_SECURE: bool = False
    SESSION_HTTP_ONLY: bool = True
    SESSION_SAME_SITE: Optional[Literal["lax", "strict", "none"]] = "lax"

    # Key material for session bodies and cookie ids
    SECRET_KEY: str = "your-secret-key-here-change-in-production"
    # Older keys still accepted for decoding (key rotation)
    SECRET_KEY_FALLBACKS: Annotated[List[str], NoDecode] = []
    ENCRYPTION_KDF_ITERATIONS: int = 300_000

    # Expired session cleanup
    CLEANUP_INTERVAL_SECONDS: float = 300.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @field_validator("SECRET_KEY_FALLBACKS", mode="before")
    @classmethod
    def parse_secret_key_fallbacks(cls, v):
        """Accept a JSON list or a comma separated string."""
        if isinstance(v, str):
            if not v.strip():
                return []
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(item) for item in parsed]
            except json.JSONDecodeError:
                pass
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def secret_keys(self) -> List[str]:
        """Current key first, then the fallbacks."""
        return [self.SECRET_KEY, *self.SECRET_KEY_FALLBACKS]


# Global settings instance
settings = Settings()

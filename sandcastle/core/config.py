from functools import lru_cache
from typing import List

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sandcastle.core.exceptions import ConfigError


ENCRYPTION_KEY_HEX_LENGTH = 64  # 32 bytes, AES-256


class Settings(BaseSettings):
    # -----------------------------
    # Database
    # -----------------------------
    DATABASE_URL: str = "sqlite:///./sandcastle.db"
    SQL_ECHO: bool = False

    # -----------------------------
    # Message broker
    # -----------------------------
    REDIS_URL: str = "redis://localhost:6379/0"

    # Signs the bearer tokens accepted by the API
    SECRET_KEY: str

    # -----------------------------
    # Google OAuth application
    # -----------------------------
    GOOGLE_CLIENT_ID: str
    GOOGLE_CLIENT_SECRET: str
    GOOGLE_CALLBACK_URL: str = "http://localhost:8000/auth/google/callback"
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    GMAIL_SCOPES: List[str] = ["https://www.googleapis.com/auth/gmail.readonly"]

    # -----------------------------
    # Credential vault
    # -----------------------------
    ENCRYPTION_KEY: str

    # -----------------------------
    # Gmail import
    # -----------------------------
    BASE_CURRENCY: str = "SGD"
    CURRENCY_ALIASES: List[str] = ["SGD", "S$"]
    GMAIL_IMPORT_QUERY: str = "(PayNow OR PayLah)"
    RECEIVE_KEYWORDS: List[str] = ["receive", "received", "receiving", "credit", "credited"]
    RECENT_WINDOW_DAYS: int = 30
    RECENT_MAX_RESULTS: int = 25
    GMAIL_PAGE_SIZE: int = 100
    GMAIL_MAX_RETRIES: int = 3
    GMAIL_BACKOFF_SECONDS: float = 1.0
    GMAIL_FETCH_WORKERS: int = 1
    IMPORT_RATE_LIMIT_PER_MINUTE: int = 5
    RECENT_IMPORT_INTERVAL_MINUTES: int = 60

    # -----------------------------
    # App Environment
    # -----------------------------
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def check_encryption_key(cls, value: str) -> str:
        if len(value) != ENCRYPTION_KEY_HEX_LENGTH:
            raise ValueError("ENCRYPTION_KEY must be a 32-byte hex string")
        try:
            bytes.fromhex(value)
        except ValueError:
            raise ValueError("ENCRYPTION_KEY must be a 32-byte hex string")
        return value

    @field_validator("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "SECRET_KEY")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("GMAIL_FETCH_WORKERS")
    @classmethod
    def check_fetch_workers(cls, value: int) -> int:
        if not 1 <= value <= 8:
            raise ValueError("GMAIL_FETCH_WORKERS must be between 1 and 8")
        return value

    @field_validator("GMAIL_MAX_RETRIES", "RECENT_MAX_RESULTS", "GMAIL_PAGE_SIZE", "IMPORT_RATE_LIMIT_PER_MINUTE")
    @classmethod
    def check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def encryption_key_bytes(self) -> bytes:
        return bytes.fromhex(self.ENCRYPTION_KEY)


def load_settings(**overrides) -> Settings:
    """Build settings, turning validation problems into a ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"Invalid configuration: {fields}") from e


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance to avoid reloading .env repeatedly"""
    return load_settings()

"""
Settings Configuration

Centralized runtime settings for the cadet portal backend.
All settings are loaded from environment variables (a .env file is honoured).
"""
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on garbage."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_list_env(key: str) -> List[str]:
    """Get a comma separated list from environment variable."""
    return [item.strip() for item in os.getenv(key, "").split(",") if item.strip()]


class Settings:
    """
    Runtime settings for the application.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through the `settings` singleton
    """

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Ledger store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./cadet_portal.db")
    DB_ECHO: bool = get_bool_env("DB_ECHO", False)
    DB_POOL_TIMEOUT: int = get_int_env("DB_POOL_TIMEOUT", 30)
    DB_BUSY_TIMEOUT: int = get_int_env("DB_BUSY_TIMEOUT", 30)

    # Auth
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = get_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

    # Catalog cache (seconds)
    CACHE_TTL_TASKS: int = get_int_env("CACHE_TTL_TASKS", 5 * 60)
    CACHE_TTL_SCORES: int = get_int_env("CACHE_TTL_SCORES", 5 * 60)

    # HTTP
    ALLOWED_ORIGINS: List[str] = get_list_env("ALLOWED_ORIGINS")
    RATE_LIMIT_ENABLED: bool = get_bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_CLAIMS: str = os.getenv("RATE_LIMIT_CLAIMS", "30/minute")

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT == "development"


# Singleton instance for easy importing
settings = Settings()

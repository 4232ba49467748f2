from pathlib import Path

from pydantic_settings import BaseSettings
from functools import lru_cache

# Backend root; the default SQLite file lives next to the ``app`` package.
_BACKEND_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = f"sqlite:///{_BACKEND_ROOT / 'gridbase.db'}"

    # JWT
    JWT_SECRET: str = "change-this-secret-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 480  # 8 hours

    # App
    APP_NAME: str = "Gridbase"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS — override with env var CORS_ORIGINS as a JSON array
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Bootstrap account created on startup when missing
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"

    # CSV import
    IMPORT_MAX_BYTES: int = 20 * 1024 * 1024  # 20 MiB
    IMPORT_TRUE_TOKENS: list[str] = ["true", "1", "yes", "y", "是"]
    IMPORT_FALSE_TOKENS: list[str] = ["false", "0", "no", "n", "否"]

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

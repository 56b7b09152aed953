"""Pydantic settings loaded from .env and the process environment."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent

_env_file = BASE_DIR.parent / ".env"
load_dotenv(_env_file)


class Settings(BaseSettings):
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'db.sqlite3'}"
    # Empty disables the cross-process room relay
    REDIS_URL: str = ""

    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    # Comma separated; empty allows every origin
    CORS_ORIGIN: str = ""

    STORE_TIMEOUT_SECONDS: float = 5.0

    HEARTBEAT_INTERVAL: int = 30
    PONG_TIMEOUT: int = 10

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def cors_origins(self) -> list[str]:
        origins = [item.strip() for item in self.CORS_ORIGIN.split(",") if item.strip()]
        return origins or ["*"]


settings = Settings()

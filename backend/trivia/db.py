from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    QUESTIONS_DIR: Path = DATA_DIR
    DEFAULT_TOPIC: str = "general"

    LEADERBOARD_BACKEND: Literal["memory", "mongo"] = "memory"
    LEADERBOARD_MAX_ENTRIES: int = 100
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "trivia"

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    EXPLANATION_TIMEOUT_SECONDS: float = 5.0


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_mongo_database(settings: Settings) -> AsyncDatabase:
    client: AsyncMongoClient = AsyncMongoClient(settings.MONGO_URL)
    return client[settings.MONGO_DB_NAME]

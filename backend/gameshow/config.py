from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUESTIONS_FILE = Path(__file__).parent / "data" / "questions.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    # Comma separated platform user ids allowed to drive the game
    ADMIN_IDS: str = ""
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None

    QUESTIONS_FILE: str = str(DEFAULT_QUESTIONS_FILE)
    SHUFFLE_QUESTIONS: bool = False

    COUNTDOWN_SECONDS: int = 3
    QUESTION_SECONDS: float = 20.0
    AUDIO_QUESTION_SECONDS: float = 40.0
    REVEAL_SECONDS: float = 5.0
    MAX_LOBBY_PLAYERS: int = 30

    TEST_AUDIO_URI: str = "media/test.mp3"

    DISCORD_TOKEN: Optional[str] = None
    CHANNEL_PATTERN: str = "plateau"

    AZURE_STORAGE_CONNECTION_STRING: Optional[str] = None
    AZURE_STORAGE_CONTAINER: str = "question-media"

    LOG_LEVEL: str = "INFO"

    @property
    def admin_ids(self) -> List[str]:
        return [i.strip() for i in self.ADMIN_IDS.split(",") if i.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def configure_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

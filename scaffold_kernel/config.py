"""Configuration from .env file."""

import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    OPENAI_API_KEY: Optional[str] = None    # Unset = deterministic fallbacks only
    OPENAI_MODEL: str = "gpt-4o-mini"
    INFERENCE_TIMEOUT_SECONDS: float = 8.0
    SAFETY_TIMEOUT_SECONDS: float = 5.0
    SUMMARY_TIMEOUT_SECONDS: float = 20.0

    DATABASE_PATH: str = ":memory:"
    AUDIT_DATABASE_PATH: str = ":memory:"

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

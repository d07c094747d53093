import logging
import os
from pydantic_settings import BaseSettings
from functools import lru_cache

logger = logging.getLogger("fileportal.config")

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Settings(BaseSettings):
    SUPABASE_URL: str
    SUPABASE_KEY: str
    STORAGE_BUCKET: str = "student-files"
    SIGNED_URL_TTL_SECONDS: int = 300
    DOWNLOAD_DIR: str = os.path.join(PROJECT_ROOT, "downloads")
    FETCH_TIMEOUT_SECONDS: float | None = 60.0

    class Config:
        env_file = os.path.join(PROJECT_ROOT, ".env")
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    logger.debug("Loading settings from .env")
    settings = Settings()
    logger.debug(
        "Settings loaded — SUPABASE_URL=%s, bucket=%s, ttl=%ds, download_dir=%s",
        settings.SUPABASE_URL,
        settings.STORAGE_BUCKET,
        settings.SIGNED_URL_TTL_SECONDS,
        settings.DOWNLOAD_DIR,
    )
    return settings

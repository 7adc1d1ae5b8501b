# src/screener/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SCREENER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_title: str = "Screener API"
    api_description: str = "Real-time stock screener: indicators, filters and live results"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Optional[str] = None
    log_to_file: bool = False
    log_json: bool = False

    # Redis
    redis_url: str = "redis://redis:6379/0"
    bar_source: Literal["memory", "redis"] = "memory"
    mirror_to_redis: bool = False
    stream_bars: bool = False
    indicator_ttl_seconds: int = Field(default=300, gt=0)

    # Refresh cycle
    refresh_interval_seconds: float = Field(default=60.0, ge=0)
    refresh_timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_batch_size: int = Field(default=50, gt=0)
    refresh_job_history: int = Field(default=100, gt=0)

    # Screening
    default_page_size: int = Field(default=50, gt=0)
    max_page_size: int = Field(default=100, gt=0)
    default_bulk_limit: int = Field(default=100, gt=0)
    max_bulk_limit: int = Field(default=1000, gt=0)

    # Realtime
    evaluation_timeout_seconds: float = Field(default=5.0, gt=0)
    send_timeout_seconds: float = Field(default=5.0, gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()

# courier_pricing/core/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    # --- Engine ---
    PRICING_MAX_BATCH_SIZE: int = Field(default=100, ge=1)
    PRICING_MAX_WORKERS: int = Field(default=8, ge=1)

    # --- Catalog ---
    PRICING_CATALOG_PATH: Optional[str] = None

    # --- Logging ---
    PRICING_LOG_LEVEL: str = "INFO"
    PRICING_LOG_JSON: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()  # reads .env

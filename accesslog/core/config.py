"""
Application configuration management using Pydantic Settings.
Loads access-log and logging options from environment variables.
"""

import json
from functools import lru_cache
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the access-log interceptor and its host app.
    All settings are loaded from environment variables with type validation.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Application ---
    APP_NAME: str = "accesslog"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = Field(default="production")

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    # --- Access log ---
    ACCESS_LOG_FORMAT: str = ""
    ACCESS_LOG_OUTPUT: str = "stdout"
    ACCESS_LOG_SKIP_PATHS: Annotated[List[str], NoDecode] = []
    ACCESS_LOG_POOL_SIZE: int = Field(default=64, ge=0)

    @field_validator("ACCESS_LOG_SKIP_PATHS", mode="before")
    @classmethod
    def parse_skip_paths(cls, v: str | list) -> List[str]:
        if isinstance(v, str):
            if v.lstrip().startswith("["):
                return json.loads(v)
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached accessor for application settings."""
    return Settings()

"""
Settings for the trigger API process.

Read from the environment and ``.env``; the monitor settings themselves
live in ``utilities.config``.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    api_title: str = Field(default="Page Monitor Trigger API")
    api_version: str = Field(default="1.0.0")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Bearer token for /crawl and /annotate; unset rejects every call
    crawl_secret: Optional[str] = Field(default=None)

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default_factory=lambda: ["GET", "POST"])
    cors_allow_headers: List[str] = Field(default_factory=lambda: ["Authorization", "Content-Type"])


config = APIConfig()

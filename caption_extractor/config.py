"""
Configuration module for caption-extractor.

Uses pydantic-settings to load configuration from environment variables.
This allows runtime tuning of upstream endpoints, cache windows and message
timeouts without code changes.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be set via either:
    - Prefixed: CAPTION_<SETTING_NAME> (e.g., CAPTION_TRANSCRIPT_CACHE_TTL)
    - Unprefixed aliases for the server settings (HOST, PORT, LOG_LEVEL)
    - In .env file

    Environment Variables:
        HOST: Server host (default: 0.0.0.0)
        PORT: Server port (default: 8000)
        LOG_LEVEL: Logging level (default: info)
        USER_AGENT: User agent sent with upstream page and caption requests
        HTTP_TIMEOUT: Upstream request timeout in seconds (default: 20)
        CAPTION_ENDPOINT_MARKER: URL substring identifying caption requests
            (default: "timedtext")
        TRANSCRIPT_CACHE_TTL: Freshness window for intercepted transcript
            bodies in seconds (default: 300)
        CAPTION_TOKEN_MAX_AGE: Age after which a captured caption token is
            reported absent, in seconds. 0 disables expiry (default: 3600)
        MESSAGE_TIMEOUT: Timeout for cross-context lookups in seconds (default: 2)
        BACKEND_URL: Fallback submission backend base URL
        STORAGE_BACKEND: "memory" or "sqlite" (default: memory)
    """

    # ========== Server Configuration ==========

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    # ========== Upstream Settings ==========

    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_4) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/85.0.4183.83 Safari/537.36,gzip(gfe)"
    )
    http_timeout: float = 20.0
    youtube_base_url: str = "https://www.youtube.com"
    bilibili_api_base: str = "https://api.bilibili.com"

    # ========== Capture and Cache Settings ==========

    caption_endpoint_marker: str = "timedtext"
    transcript_cache_ttl: int = 300  # 5 minutes
    transcript_cache_maxsize: int = 256
    caption_token_max_age: int = 3600
    message_timeout: float = 2.0

    # ========== Submission and Storage ==========

    backend_url: str = "http://localhost:8096"
    submit_timeout: float = 30.0
    storage_backend: Literal["memory", "sqlite"] = "memory"
    database_path: str = "storage.db"

    model_config = SettingsConfigDict(
        env_prefix="CAPTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


# Global settings instance - loaded at startup with environment variables
settings = Settings()

"""Configuration management for Gmail Thread Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAIL_SYNC_ prefix (e.g., MAIL_SYNC_CACHE_DB_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAIL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail Configuration
    gmail_api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Base URL of the Gmail REST API",
    )
    gmail_user_id: str = Field(
        default="me",
        description="Gmail user id used in API paths",
    )
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API OAuth client credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.modify",
        description="OAuth scope used for Gmail access (reading and sending mail)",
    )
    gmail_allow_interactive: bool = Field(
        default=True,
        description="Allow launching the browser OAuth flow when no valid token exists",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout for Gmail API requests in seconds",
    )

    # Retry Configuration
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of retries for retryable network failures",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Base backoff delay in seconds (doubles each attempt)",
    )
    retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for a single backoff delay in seconds",
    )
    retry_jitter_factor: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Relative jitter applied to each backoff delay",
    )

    # Sync Configuration
    thread_page_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Number of thread summaries requested per list page",
    )
    fetch_concurrency: int = Field(
        default=5,
        ge=1,
        description="Maximum concurrent thread detail fetches within one page",
    )
    fetch_strategy: Literal["incremental", "accumulate"] = Field(
        default="incremental",
        description=(
            "Thread fetch strategy: 'incremental' refetches new or changed threads "
            "by historyId, 'accumulate' only collects threads not yet known"
        ),
    )
    sync_label_ids: list[str] = Field(
        default_factory=lambda: ["INBOX"],
        description="Labels used to filter the synced thread list",
    )
    sync_query: str | None = Field(
        default=None,
        description="Optional Gmail search query applied to the synced thread list",
    )

    # Cache Configuration
    cache_db_path: Path = Field(
        default=Path("mail_cache.sqlite3"),
        description="Path to local SQLite database storing synced threads",
    )
    cache_write_strategy: Literal["update", "replace"] = Field(
        default="update",
        description="Persist threads by updating rows in place or by replacing them",
    )

    # AI Configuration
    ai_provider: Literal["openrouter", "none"] = Field(
        default="openrouter",
        description="AI formatting provider; 'none' disables AI formatting",
    )
    ai_api_key: str | None = Field(
        default=None,
        description="API key for the AI formatting provider",
    )
    ai_model: str = Field(
        default="openai/gpt-5-nano",
        description="Model used for AI formatting",
    )
    ai_base_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        description="Chat completions endpoint of the AI provider",
    )
    ai_timeout: float = Field(
        default=30.0,
        description="Timeout for AI formatting requests in seconds",
    )
    ai_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum concurrent AI formatting requests",
    )

    # Outbound mail
    message_id_domain: str = Field(
        default="gmail-thread-sync.local",
        description="Domain part of generated Message-ID headers",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()

"""Configuration management for the PhotoGen task service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PHOTOGEN_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PHOTOGEN_* prefix)
2. .env file in the project root
3. Default values defined in PhotogenConfig

Example .env file:
    PHOTOGEN_PROVIDER_API_KEY=sk-...
    PHOTOGEN_WEBHOOK_BASE_URL=photogen.example.com
    PHOTOGEN_DATABASE_PATH=data/photogen.db
    PHOTOGEN_PUBLIC_URL=https://cdn.example.com

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from photogen.core.config import config

    print(config.provider_base_url)
    print(config.task_timeout_seconds)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- the parent directory of database_path: SQLite task database
- storage_dir: Uploaded and generated image assets

Task Lifecycle Settings
-----------------------
- task_timeout_seconds: window after which a task with no webhook is failed
- cache_ttl_seconds: lifetime of quick-result cache entries
- estimated_task_seconds: expected provider latency used for progress estimates
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PhotogenConfig(BaseSettings):
    """Main configuration for the PhotoGen task service.

    Values are loaded from environment variables with the PHOTOGEN_ prefix,
    with fallback to the defaults defined here.

    Attributes
    ----------
    Provider Settings:
        provider_base_url : str
            Base URL of the provider jobs API (``createTask``/``recordInfo``)
        provider_api_key : str
            Bearer token for the provider API (empty disables task submission)
        provider_generate_model : str
            Provider model used for text-to-image tasks
        provider_edit_model : str
            Provider model used for image editing tasks
        provider_request_timeout : float
            Timeout in seconds for provider API calls
        webhook_base_url : str | None
            Public base URL the provider calls back into

    Storage Settings:
        database_path : Path
            SQLite database file for task records
        storage_dir : Path
            Directory holding uploaded and generated images
        public_url : str | None
            Public base URL for stored assets (served from /media when unset)
        download_timeout : float
            Timeout in seconds for downloading provider result images

    Lifecycle Settings:
        task_timeout_seconds : int
            Seconds without a webhook before a task is force-failed
        cache_ttl_seconds : int
            Seconds a quick-result cache entry stays readable
        event_log_size : int
            Number of webhook/timeout events kept in memory
        estimated_task_seconds : int
            Expected provider latency used for progress estimates

    Validation Limits:
        max_prompt_length, max_edit_prompt_length, max_input_images,
        max_upload_bytes, default_strength

    Server Settings:
        server_host, server_port, log_level

    Notes
    -----
    - Directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PHOTOGEN_",
        case_sensitive=False,
    )

    # Provider settings
    provider_base_url: str = Field(
        default="https://api.kie.ai/api/v1/jobs",
        description="Base URL of the provider jobs API",
    )
    provider_api_key: str = Field(
        default="",
        description="Bearer token for the provider API",
    )
    provider_generate_model: str = Field(
        default="google/nano-banana",
        description="Provider model for text-to-image tasks",
    )
    provider_edit_model: str = Field(
        default="google/nano-banana-edit",
        description="Provider model for image editing tasks",
    )
    provider_request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for provider API calls",
        gt=0,
    )
    user_agent: str = Field(
        default="PhotoGen-AI/1.0",
        description="User-Agent header sent on outbound requests",
    )
    webhook_base_url: str | None = Field(
        default=None,
        description="Public base URL the provider calls back into",
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/photogen.db"),
        description="SQLite database file for task records",
    )
    storage_dir: Path = Field(
        default=Path("storage"),
        description="Directory holding uploaded and generated images",
    )
    public_url: str | None = Field(
        default=None,
        description="Public base URL for stored assets",
    )
    download_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for downloading result images",
        gt=0,
    )

    # Task lifecycle
    task_timeout_seconds: int = Field(
        default=600,
        description="Seconds without a webhook before a task is failed",
        ge=1,
    )
    cache_ttl_seconds: int = Field(
        default=600,
        description="Lifetime of quick-result cache entries",
        ge=1,
    )
    event_log_size: int = Field(default=50, ge=1, le=1000)
    estimated_task_seconds: int = Field(default=60, ge=1)

    # Validation limits
    max_prompt_length: int = Field(default=5000, ge=1)
    max_edit_prompt_length: int = Field(default=2000, ge=1)
    max_input_images: int = Field(default=5, ge=1, le=10)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    default_strength: float = Field(default=0.8, ge=0.0, le=1.0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    @property
    def task_timeout_minutes(self) -> int:
        """Timeout window in whole minutes, used in user-facing messages."""
        return max(1, round(self.task_timeout_seconds / 60))


# Global configuration instance
# Loads values from environment variables (PHOTOGEN_* prefix) and .env file.
config = PhotogenConfig()

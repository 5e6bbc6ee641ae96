"""
Configuration management for Transcript Studio

Using pydantic-settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables with the TSTUDIO_ prefix.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiConfig(BaseSettings):
    """Configuration for the task service HTTP client"""

    model_config = SettingsConfigDict(
        env_prefix='TSTUDIO_API_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    base_url: str = Field(
        default="http://localhost:8000/api/",
        description="Base URL of the task service API"
    )

    # No timeout by default: a hung call only delays the next poll
    request_timeout: Optional[float] = Field(
        default=None,
        description="Total request timeout in seconds (None disables it)",
        gt=0
    )

    max_retries: int = Field(
        default=3,
        description="Maximum retry attempts for idempotent reads",
        ge=1,
        le=10
    )

    retry_delay: int = Field(
        default=1,
        description="Initial retry delay in seconds",
        ge=1,
        le=60
    )

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://")
        # urljoin drops the last path segment without a trailing slash
        return v if v.endswith('/') else v + '/'


class WatcherConfig(BaseSettings):
    """Configuration for transcription completion detection"""

    model_config = SettingsConfigDict(
        env_prefix='TSTUDIO_WATCHER_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    poll_interval: float = Field(
        default=5.0,
        description="Passive status poll interval in seconds",
        gt=0
    )

    wait_interval: float = Field(
        default=10.0,
        description="Active wait-loop interval in seconds",
        gt=0
    )

    max_wait_iterations: Optional[int] = Field(
        default=None,
        description="Optional cap on wait-loop iterations (None waits until terminal)",
        ge=1
    )


class EditorConfig(BaseSettings):
    """Configuration for the content edit buffer"""

    model_config = SettingsConfigDict(
        env_prefix='TSTUDIO_EDITOR_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    debounce_delay: float = Field(
        default=0.1,
        description="Edit coalescing delay in seconds",
        gt=0,
        le=5
    )


class RecordingConfig(BaseSettings):
    """Configuration for local audio recording"""

    model_config = SettingsConfigDict(
        env_prefix='TSTUDIO_RECORDING_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    tick_interval: float = Field(
        default=1.0,
        description="Elapsed-time counter tick in seconds",
        gt=0
    )


class AppConfig(BaseSettings):
    """Main application configuration"""

    model_config = SettingsConfigDict(
        env_prefix='TSTUDIO_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'  # Ignore unknown environment variables
    )

    # Sub-configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)

    # Global settings
    debug: bool = Field(
        default=False,
        description="Enable debug logging"
    )

    auth_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the task service"
    )

    credits: int = Field(
        default=1,
        description="Credit balance reported for the signed-in account"
    )


# Global configuration instance
config = AppConfig()

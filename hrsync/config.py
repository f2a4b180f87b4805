"""Configuration management using pydantic-settings."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


STORE_BACKENDS = ("duckdb", "mongodb", "memory")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=7790, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Persistence Configuration
    store_backend: str = Field(default="duckdb", description="Conversation store backend: duckdb, mongodb or memory")
    database_path: str = Field(default="./data/hrsync.db", description="DuckDB database file")
    mongodb_url: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    mongodb_database: str = Field(default="hrapp", description="MongoDB database name")

    # HR Gateway Configuration
    hr_api_base_url: str = Field(default="http://localhost:8081", description="External HR API base URL")
    hr_api_key: Optional[str] = Field(default=None, description="External HR API key")
    hr_api_key_ttl_seconds: int = Field(default=900, description="How long a loaded API key is trusted before re-reading it")
    hr_request_timeout: float = Field(default=10.0, description="Timeout for a single HR API request in seconds")

    # Submission Queue Configuration
    queue_poll_interval: float = Field(default=10.0, description="Retry processor polling interval in seconds")
    queue_batch_size: int = Field(default=50, description="Maximum queue items fetched per poll")
    queue_max_retries: int = Field(default=3, description="Maximum retry attempts per queue item")
    processing_timeout: float = Field(default=30.0, description="Per-attempt timeout and processing lease in seconds")
    enable_retry_processor: bool = Field(default=True, description="Run the retry processor in this process")

    # Deletion Configuration
    deletion_window_days: int = Field(default=30, description="Days between a deletion request and its processing")
    deletion_interval_hours: float = Field(default=24.0, description="Deletion processor interval in hours")
    deletion_startup_delay: float = Field(default=300.0, description="Delay before the first deletion cycle in seconds")
    enable_deletion_processor: bool = Field(default=True, description="Run the deletion processor in this process")

    # Session Configuration
    session_active_window_minutes: int = Field(default=30, description="Activity window for concurrent session detection")

    # Audit Configuration
    audit_log_dir: str = Field(default="./data/audit", description="Base directory for audit trails")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_file: str = Field(default="./logs/hrsync.log", description="Log file path")

    def get_store_backend(self) -> str:
        """Get the normalized store backend name."""
        backend = self.store_backend.strip().lower()
        if backend not in STORE_BACKENDS:
            raise ValueError(f"Unknown store backend: {self.store_backend}")
        return backend


# Global settings instance
settings = Settings()

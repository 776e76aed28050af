"""Configuration settings using pydantic-settings."""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram Bot
    BOT_TOKEN: str = Field(default="", description="Telegram Bot API token")

    # Persistent store
    STORE_BACKEND: str = Field(
        default="local",
        description="Store implementation: 'local' (SQLite) or 'rest' (hosted store)"
    )
    STORE_URL: str = Field(default="", description="Hosted store base URL")
    STORE_ANON_KEY: str = Field(default="", description="Hosted store public API key")
    STORE_TIMEOUT: int = Field(default=30, description="Store request timeout in seconds")

    # Local database
    DATABASE_PATH: str = Field(
        default="data/stayfocus.db",
        description="Path to SQLite database file (local store backend)"
    )

    # Offline queue
    LOCAL_STORAGE_PATH: str = Field(
        default="data/local_storage.db",
        description="Path to SQLite file holding the offline queue blob"
    )
    OFFLINE_QUEUE_KEY: str = Field(
        default="stayfocus_offline_queue",
        description="Storage key of the persisted offline queue"
    )
    OFFLINE_QUEUE_MAX_RETRIES: int = Field(
        default=3,
        description="Replay attempts before a queued operation is dropped"
    )
    QUEUE_ENCRYPTION_KEY: str = Field(
        default="",
        description="Optional Fernet key used to encrypt the persisted queue"
    )
    CONNECTIVITY_CHECK_INTERVAL: int = Field(
        default=15,
        description="Seconds between store reachability checks"
    )

    # REST API
    API_HOST: str = Field(default="0.0.0.0", description="REST API bind address")
    API_PORT: int = Field(default=8080, description="REST API port")
    APP_VERSION: str = Field(default="1.0.0", description="Version reported by /api/health")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment name")

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    class Config:
        """Pydantic config."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()

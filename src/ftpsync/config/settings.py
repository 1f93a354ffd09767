"""Application configuration settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FTPSettings(BaseSettings):
    """FTP server connection configuration."""

    host: str = Field(default="localhost")
    port: int = Field(default=21)
    username: str = Field(default="anonymous")
    password: str = Field(default="")
    secure: bool = Field(default=True, description="Upgrade the control connection with AUTH TLS")
    verify_tls: bool = Field(default=False, description="Verify the server certificate")
    socket_timeout: Optional[float] = Field(default=60.0)
    block_size: int = Field(default=64 * 1024)

    model_config = SettingsConfigDict(env_prefix="FTP_")


class StoreSettings(BaseSettings):
    """Fingerprint store configuration."""

    url: str = Field(default="sqlite:///./data/file_index.db")

    model_config = SettingsConfigDict(env_prefix="STORE_")


class RetrySettings(BaseSettings):
    """Transfer retry configuration."""

    max_retries_per_file: int = Field(default=10)
    delay_seconds: float = Field(default=1.0)

    model_config = SettingsConfigDict(env_prefix="RETRY_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default="./logs/ftpsync.log")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="FTP Sync")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")

    ftp: FTPSettings = Field(default_factory=FTPSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings

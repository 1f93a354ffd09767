"""Configuration package for ftpsync."""

from .settings import (
    FTPSettings,
    StoreSettings,
    RetrySettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

from .schema import (
    SyncConfig,
    ExclusionRule,
    PurgeMode
)

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_config_from_env
)

__all__ = [
    "FTPSettings",
    "StoreSettings",
    "RetrySettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings",

    "SyncConfig",
    "ExclusionRule",
    "PurgeMode",

    "ConfigLoader",
    "ConfigurationError",
    "load_config_from_env"
]

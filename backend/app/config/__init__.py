"""
Configuration Module

Provides centralized configuration management for the application.
"""

from .settings import (
    load_yaml_config,
    DatabaseConfig,
    ServerConfig,
    LogConfig,
    BitbucketConfig,
    CredentialCookieConfig,
    PersistencyConfig,
    CacheConfig,
    EmbeddingConfig,
    SessionManagerConfig,
    get_settings,
    Settings,
)

from .logging_config import (
    LoggingConfig,
    log_print,
)

__all__ = [
    "load_yaml_config",
    "DatabaseConfig",
    "ServerConfig",
    "LogConfig",
    "BitbucketConfig",
    "CredentialCookieConfig",
    "PersistencyConfig",
    "CacheConfig",
    "EmbeddingConfig",
    "SessionManagerConfig",
    "get_settings",
    "Settings",
    "LoggingConfig",
    "log_print",
]

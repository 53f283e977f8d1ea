"""
Configuration Module

Provides centralized configuration management for the application.
Supports YAML config files with environment overrides for secrets.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries. Override values take precedence.

    Args:
        base: Base configuration dictionary
        override: Override configuration dictionary

    Returns:
        Merged configuration dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML configuration {path.name}: {e}")
    except OSError as e:
        raise RuntimeError(f"Error loading configuration file {path.name}: {e}")


def load_yaml_config() -> Dict[str, Any]:
    """
    Load configuration from YAML files with local override support.

    Loading order:
    1. config.yaml (or config.example.yaml as fallback) as base configuration
    2. config.local.yaml, if present, merged over the base

    Returns:
        Dictionary containing all configuration values
    """
    config_dir = Path(__file__).parent
    config_path = config_dir / "config.yaml"

    if not config_path.exists():
        config_path = config_dir / "config.example.yaml"
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found. Please create {config_dir / 'config.yaml'} "
                f"based on {config_dir / 'config.example.yaml'}"
            )

    base_config = _read_yaml(config_path)

    local_config_path = config_dir / "config.local.yaml"
    if local_config_path.exists():
        return deep_merge(base_config, _read_yaml(local_config_path))

    return base_config


_config = load_yaml_config()


# ============================================================================
# Database Configuration
# ============================================================================

class DatabaseConfig:
    """Database configuration management"""

    _db_config = _config.get("database", {})

    URL = os.environ.get("DATABASE_URL") or _db_config.get("url", "")

    HOST = _db_config.get("host", "localhost")
    PORT = _db_config.get("port", 3306)
    USER = _db_config.get("user", "root")
    PASSWORD = os.environ.get("DATABASE_PASSWORD") or _db_config.get("password", "")
    NAME = _db_config.get("name", "persistency_assistant")

    POOL_SIZE = _db_config.get("pool_size", 5)
    MAX_OVERFLOW = _db_config.get("max_overflow", 10)
    POOL_RECYCLE = _db_config.get("pool_recycle", 3600)
    ECHO = _db_config.get("echo", False)

    @classmethod
    def get_async_database_url(cls) -> str:
        if cls.URL:
            return cls.URL
        return f"mysql+aiomysql://{cls.USER}:{cls.PASSWORD}@{cls.HOST}:{cls.PORT}/{cls.NAME}?charset=utf8mb4"

    @classmethod
    def is_sqlite(cls) -> bool:
        return cls.get_async_database_url().startswith("sqlite")


# ============================================================================
# Server Configuration
# ============================================================================

class ServerConfig:
    """Server configuration management"""

    _server_config = _config.get("server", {})

    HOST = _server_config.get("host", "0.0.0.0")
    PORT = _server_config.get("port", 8000)
    RELOAD = _server_config.get("reload", False)
    DEBUG = _server_config.get("debug", False)
    CORS_ORIGINS = _server_config.get("cors_origins", ["http://localhost:5173", "http://localhost:3000"])
    # Where the browser lands after the OAuth callback
    APP_URL = _server_config.get("app_url", "http://localhost:3000")


# ============================================================================
# Logging Configuration
# ============================================================================

class LogConfig:
    """Log file and level settings"""

    _log_config = _config.get("logging", {})

    LEVEL = os.environ.get("LOG_LEVEL") or _log_config.get("level", "INFO")
    FILE_NAME = _log_config.get("file_name", "persistency-assistant")
    BACKUP_COUNT = _log_config.get("backup_count", 30)
    DIR = _log_config.get("dir")


# ============================================================================
# Bitbucket Configuration
# ============================================================================

class BitbucketConfig:
    """Bitbucket Cloud OAuth consumer and API settings"""

    _bitbucket_config = _config.get("bitbucket", {})

    CLIENT_ID = os.environ.get("BITBUCKET_CLIENT_ID") or _bitbucket_config.get("client_id", "")
    CLIENT_SECRET = os.environ.get("BITBUCKET_CLIENT_SECRET") or _bitbucket_config.get("client_secret", "")
    REDIRECT_URI = os.environ.get("BITBUCKET_REDIRECT_URI") or _bitbucket_config.get(
        "redirect_uri", "http://localhost:8000/api/bitbucket/callback"
    )

    API_BASE_URL = _bitbucket_config.get("api_base_url", "https://api.bitbucket.org/2.0")
    AUTHORIZE_URL = _bitbucket_config.get("authorize_url", "https://bitbucket.org/site/oauth2/authorize")
    TOKEN_URL = _bitbucket_config.get("token_url", "https://bitbucket.org/site/oauth2/access_token")
    TIMEOUT = _bitbucket_config.get("timeout", 30)

    # Refresh when less than this many seconds of validity remain
    REFRESH_SKEW_SECONDS = _bitbucket_config.get("refresh_skew_seconds", 60)

    @classmethod
    def is_configured(cls) -> bool:
        return bool(cls.CLIENT_ID and cls.CLIENT_SECRET and cls.REDIRECT_URI)


# ============================================================================
# Credential Cookie Configuration
# ============================================================================

class CredentialCookieConfig:
    """Signed cookie carrying the Bitbucket credential"""

    _cookie_config = _config.get("credential_cookie", {})

    NAME = _cookie_config.get("name", "bitbucket_oauth")
    SECRET_KEY = os.environ.get("CREDENTIAL_COOKIE_SECRET") or _cookie_config.get("secret_key", "")
    ALGORITHM = _cookie_config.get("algorithm", "HS256")
    MAX_AGE_DAYS = _cookie_config.get("max_age_days", 30)
    SECURE = _cookie_config.get("secure", False)
    STATE_TTL_SECONDS = _cookie_config.get("state_ttl_seconds", 600)

    @classmethod
    def max_age_seconds(cls) -> int:
        return int(cls.MAX_AGE_DAYS) * 24 * 60 * 60


# ============================================================================
# Persistency Layer Configuration
# ============================================================================

class PersistencyConfig:
    """Layout and limits of the persistency layer folder"""

    _persistency_config = _config.get("persistency", {})

    ROOT_DIR = _persistency_config.get("root_dir", "ai")
    EXTENSIONS: List[str] = _persistency_config.get("extensions", [".mdc"])
    BOOTSTRAP_FILE = _persistency_config.get("bootstrap_file", "ai-bootstrap.mdc")
    MAX_FILES = int(os.environ.get("AI_FOLDER_MAX_FILES") or _persistency_config.get("max_files", 20))
    MAX_BYTES_PER_FILE = _persistency_config.get("max_bytes_per_file", 100_000)
    LEGACY_PREFIXES: List[str] = _persistency_config.get("legacy_prefixes", ["files"])
    FEATURE_BRANCH_PREFIX = _persistency_config.get("feature_branch_prefix", "ai-session/")


# ============================================================================
# Remote Listing Cache Configuration
# ============================================================================

class CacheConfig:
    """Remote listing cache settings"""

    _cache_config = _config.get("cache", {})

    TTL_SECONDS = _cache_config.get("ttl_seconds", 600)


# ============================================================================
# Embedding Configuration
# ============================================================================

class EmbeddingConfig:
    """Embedding provider and retrieval thresholds"""

    _embedding_config = _config.get("embedding", {})

    API_KEY = os.environ.get("OPENAI_API_KEY") or _embedding_config.get("api_key", "")
    BASE_URL: Optional[str] = os.environ.get("OPENAI_BASE_URL") or _embedding_config.get("base_url") or None
    MODEL = _embedding_config.get("model", "text-embedding-ada-002")

    CHUNK_SIZE = _embedding_config.get("chunk_size", 1500)
    MAX_CONTEXT_CHUNKS = _embedding_config.get("max_context_chunks", 120)
    DURABLE_THRESHOLD = _embedding_config.get("durable_threshold", 0.3)
    CONTEXT_THRESHOLD = _embedding_config.get("context_threshold", 0.25)
    DEFAULT_LIMIT = _embedding_config.get("default_limit", 6)
    PREVIEW_LENGTH = _embedding_config.get("preview_length", 300)


# ============================================================================
# Session Manager Configuration
# ============================================================================

class SessionManagerConfig:
    """Client orchestration settings"""

    _session_manager_config = _config.get("session_manager", {})

    DEBOUNCE_SECONDS = _session_manager_config.get("debounce_seconds", 2.0)


# ============================================================================
# Pydantic Settings
# ============================================================================

class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Persistency Assistant"
    debug: bool = ServerConfig.DEBUG

    # Server
    host: str = ServerConfig.HOST
    port: int = ServerConfig.PORT
    cors_origins: List[str] = ServerConfig.CORS_ORIGINS
    app_url: str = ServerConfig.APP_URL

    # Database
    database_url: str = DatabaseConfig.get_async_database_url()

    # Bitbucket
    bitbucket_api_base_url: str = BitbucketConfig.API_BASE_URL
    bitbucket_redirect_uri: str = BitbucketConfig.REDIRECT_URI
    bitbucket_timeout: float = BitbucketConfig.TIMEOUT

    # Persistency layer
    persistency_root_dir: str = PersistencyConfig.ROOT_DIR
    persistency_max_files: int = PersistencyConfig.MAX_FILES
    persistency_max_bytes_per_file: int = PersistencyConfig.MAX_BYTES_PER_FILE

    # Cache
    cache_ttl_seconds: int = CacheConfig.TTL_SECONDS

    # Embedding
    embedding_model: str = EmbeddingConfig.MODEL


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


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
    "Settings",
    "get_settings",
]

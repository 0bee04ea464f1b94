"""
Environment configuration loader with validation for the booking core.
"""

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..cache.config import CachePolicy, ValkeyConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


class AtelierConfig(BaseModel):
    """Configuration model for the booking core with validation."""
    model_config = ConfigDict(validate_assignment=True)

    # Row store
    database_url: str = Field(default="sqlite:///atelier.db", description="Row store database URL")

    # Valkey cache
    use_valkey: bool = Field(default=True, description="False keeps the cache in process memory")
    valkey_host: str = Field(default="localhost", description="Valkey server host")
    valkey_port: int = Field(default=6379, ge=1, le=65535, description="Valkey server port")
    valkey_password: Optional[str] = Field(default=None, description="Valkey server password")
    valkey_database: int = Field(default=0, ge=0, le=15, description="Valkey database number")
    valkey_max_connections: int = Field(default=10, ge=1, description="Maximum Valkey connections")
    valkey_socket_timeout: float = Field(default=5.0, gt=0, description="Valkey socket timeout in seconds")

    # Dataset cache
    cache_expiry_seconds: int = Field(default=86400, ge=60, description="Dataset entry TTL")
    chunk_size_limit_kb: int = Field(default=90, ge=1, description="Maximum serialized chunk size")
    max_chunks: int = Field(default=20, ge=1, description="Maximum chunks per dataset")
    max_entry_size_kb: int = Field(default=100, ge=1, description="Entry ceiling of the backing medium")

    # Reservation mutex
    lock_wait_timeout_seconds: float = Field(default=30.0, ge=0, description="Wait for the reservation mutex")
    lock_ttl_seconds: int = Field(default=60, ge=1, le=300, description="Lease of the reservation mutex")

    # Application
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_chunk_size(self) -> "AtelierConfig":
        """Chunks must fit below the entry ceiling."""
        if self.chunk_size_limit_kb > self.max_entry_size_kb:
            raise ValueError("chunk_size_limit_kb must not exceed max_entry_size_kb")
        return self

    def valkey_config(self) -> ValkeyConfig:
        return ValkeyConfig(
            host=self.valkey_host,
            port=self.valkey_port,
            password=self.valkey_password,
            database=self.valkey_database,
            max_connections=self.valkey_max_connections,
            socket_timeout=self.valkey_socket_timeout,
        )

    def cache_policy(self) -> CachePolicy:
        return CachePolicy(
            cache_expiry_seconds=self.cache_expiry_seconds,
            chunk_size_limit_kb=self.chunk_size_limit_kb,
            max_chunks=self.max_chunks,
            max_entry_size_kb=self.max_entry_size_kb,
        )


def load_config(env_file: Optional[str] = None) -> AtelierConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        AtelierConfig: Validated configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    config_data: Dict[str, Any] = {
        "database_url": os.getenv("DATABASE_URL", "sqlite:///atelier.db"),
        "use_valkey": _flag("USE_VALKEY", "true"),
        "valkey_host": os.getenv("VALKEY_HOST", "localhost"),
        "valkey_port": os.getenv("VALKEY_PORT", "6379"),
        "valkey_password": os.getenv("VALKEY_PASSWORD") or None,
        "valkey_database": os.getenv("VALKEY_DATABASE", "0"),
        "valkey_max_connections": os.getenv("VALKEY_MAX_CONNECTIONS", "10"),
        "valkey_socket_timeout": os.getenv("VALKEY_SOCKET_TIMEOUT", "5.0"),
        "cache_expiry_seconds": os.getenv("CACHE_EXPIRY_SECONDS", "86400"),
        "chunk_size_limit_kb": os.getenv("CACHE_CHUNK_SIZE_LIMIT_KB", "90"),
        "max_chunks": os.getenv("CACHE_MAX_CHUNKS", "20"),
        "max_entry_size_kb": os.getenv("CACHE_MAX_ENTRY_SIZE_KB", "100"),
        "lock_wait_timeout_seconds": os.getenv("LOCK_WAIT_TIMEOUT_SECONDS", "30"),
        "lock_ttl_seconds": os.getenv("LOCK_TTL_SECONDS", "60"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "debug": _flag("ATELIER_DEBUG", "false"),
    }

    try:
        return AtelierConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")


def validate_required_settings(config: AtelierConfig) -> None:
    """
    Validate that all required settings are properly configured.

    Raises:
        ValueError: If required settings are missing or invalid
    """
    if not config.database_url:
        raise ValueError("DATABASE_URL is required")

    if config.use_valkey and not config.valkey_host:
        raise ValueError("VALKEY_HOST is required when USE_VALKEY is set")

    logger.info(
        f"Configuration validated: database={config.database_url.split('@')[-1]}, "
        f"valkey={'%s:%s' % (config.valkey_host, config.valkey_port) if config.use_valkey else 'in-process'}"
    )


def configure_logging(config: AtelierConfig) -> None:
    """Apply the configured level and format to the root logger."""
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


# Global configuration instance
_config: Optional[AtelierConfig] = None


def get_config() -> AtelierConfig:
    """
    Get the global configuration instance, loading it if necessary.

    Returns:
        AtelierConfig: The global configuration object
    """
    global _config
    if _config is None:
        _config = load_config()
        validate_required_settings(_config)
    return _config

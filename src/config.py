"""
Configuration module for the bootstrap configuration ensurer.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "configuration_store"
    user: str = "ensurer"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "configuration_store"),
            user=os.getenv("DB_USER", "ensurer"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class EnsurerConfig:
    """Bootstrap ensure loop configuration."""

    ensure_interval: int = 60  # seconds between passes

    # Whether an object without the auto-update annotation may be rewritten
    # (and removed once retired) by the system
    missing_annotation_auto_update: bool = True

    # Whether retired defaults are deleted at the end of each pass
    remove_dangling: bool = True

    cache_queue_size: int = 256

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            ensure_interval=int(os.getenv("ENSURE_INTERVAL", "60")),
            missing_annotation_auto_update=_env_bool(
                "MISSING_ANNOTATION_AUTO_UPDATE", "true"
            ),
            remove_dangling=_env_bool("REMOVE_DANGLING", "true"),
            cache_queue_size=int(os.getenv("CACHE_QUEUE_SIZE", "256")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    ensurer: EnsurerConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            ensurer=EnsurerConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            ensurer=EnsurerConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None

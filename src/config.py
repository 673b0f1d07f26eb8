"""
Configuration module for the VirtualService controller.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from finalizers import VIRTUAL_SERVICE_DELETION_FINALIZER


@dataclass
class DatabaseConfig:
    """PostgreSQL object store configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "appmesh_controller"
    user: str = "controller"
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
            database=os.getenv("DB_NAME", "appmesh_controller"),
            user=os.getenv("DB_USER", "controller"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class ControlPlaneConfig:
    """Remote control-plane endpoint configuration."""

    url: str = "http://localhost:9080"
    token: Optional[str] = field(default=None, repr=False)
    timeout: int = 30  # seconds per request

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            url=os.getenv("CONTROL_PLANE_URL", "http://localhost:9080"),
            token=os.getenv("CONTROL_PLANE_TOKEN") or None,
            timeout=int(os.getenv("CONTROL_PLANE_TIMEOUT", "30")),
        )


@dataclass
class ControllerConfig:
    """Reconciler configuration."""

    finalizer_name: str = VIRTUAL_SERVICE_DELETION_FINALIZER
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            finalizer_name=os.getenv(
                "FINALIZER_NAME", VIRTUAL_SERVICE_DELETION_FINALIZER
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    control_plane: ControlPlaneConfig
    controller: ControllerConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            control_plane=ControlPlaneConfig.from_env(),
            controller=ControllerConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            control_plane=ControlPlaneConfig(),
            controller=ControllerConfig(),
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

"""
Core infrastructure for OAuthKeeper.

Configuration loading and logging setup shared by the server and the CLI.
"""

from .config_manager import (
    ConfigManager,
    LoggingConfig,
    OAuthConfig,
    OAuthKeeperConfig,
    ServerConfig,
    StorageSettings,
)
from .logging_config import configure_logging, get_logger, setup_logging

__all__ = [
    "ConfigManager",
    "LoggingConfig",
    "OAuthConfig",
    "OAuthKeeperConfig",
    "ServerConfig",
    "StorageSettings",
    "configure_logging",
    "setup_logging",
    "get_logger",
]

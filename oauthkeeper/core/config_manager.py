"""
Configuration management for OAuthKeeper.

Handles loading, validation, and access to configuration settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError, ConfigDict

from .logging_config import _parse_size

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackendType(str, Enum):
    """Supported credential store backends."""
    IN_MEMORY = "in-memory"
    SQLITE = "sqlite"


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 3000
    workers: int = 1


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'oauthkeeper.oauth.grants': 'DEBUG'}"
    )

    @field_validator("rotation_size")
    @classmethod
    def validate_rotation_size(cls, v: str) -> str:
        _parse_size(v)
        return v

    model_config = ConfigDict(use_enum_values=True)


class StorageSettings(BaseModel):
    """Credential store configuration."""
    type: StorageBackendType = StorageBackendType.IN_MEMORY
    sqlite_path: str = "./data/oauthkeeper.db"
    wal_enabled: bool = True

    model_config = ConfigDict(use_enum_values=True)


class OAuthConfig(BaseModel):
    """Token lifetimes and authorization flow settings (seconds)."""
    access_token_lifetime: int = Field(default=3600, gt=0)
    refresh_token_lifetime: int = Field(default=14 * 24 * 3600, gt=0)
    authorization_code_lifetime: int = Field(default=30, gt=0)
    state_secret: Optional[str] = Field(
        default=None,
        description="Key for signing the login/consent state carrier; random per process when unset"
    )
    state_lifetime: int = Field(default=600, gt=0)
    user_expired_seconds: int = Field(default=3 * 24 * 3600, gt=0)
    password_iterations: int = Field(default=20, gt=0)

    @model_validator(mode="after")
    def check_refresh_outlives_access(self) -> "OAuthConfig":
        """A refresh token must live strictly longer than its access token."""
        if self.refresh_token_lifetime <= self.access_token_lifetime:
            raise ValueError("refresh_token_lifetime must exceed access_token_lifetime")
        return self


class OAuthKeeperConfig(BaseModel):
    """Main OAuthKeeper configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    server: ServerConfig = Field(default_factory=ServerConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    storage: StorageSettings = Field(default_factory=StorageSettings)

    oauth: OAuthConfig = Field(default_factory=OAuthConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3 or not all(part.isdigit() for part in parts):
            raise ValueError("Version must be in format x.y.z")
        return v

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages OAuthKeeper configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (OAUTHKEEPER_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    ENV_PREFIX = "OAUTHKEEPER_"

    def __init__(self):
        self._config: Optional[OAuthKeeperConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> OAuthKeeperConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Nested dictionary of CLI argument overrides

        Returns:
            Validated OAuthKeeperConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.info("Loading OAuthKeeper configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.info(f"Applied {len(cli_overrides)} CLI argument overrides")

        try:
            self._config = OAuthKeeperConfig(**config_dict)
            logger.info("Configuration validated successfully")
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}
        p = self.ENV_PREFIX

        if host := os.getenv(f"{p}HOST"):
            config.setdefault("server", {})["host"] = host
        if port := os.getenv(f"{p}PORT"):
            config.setdefault("server", {})["port"] = int(port)

        if log_level := os.getenv(f"{p}LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv(f"{p}LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file
        if log_format := os.getenv(f"{p}LOG_FORMAT"):
            config.setdefault("logging", {})["format"] = log_format

        if storage_type := os.getenv(f"{p}STORAGE_TYPE"):
            config.setdefault("storage", {})["type"] = storage_type
        if sqlite_path := os.getenv(f"{p}SQLITE_PATH"):
            config.setdefault("storage", {})["sqlite_path"] = sqlite_path

        if state_secret := os.getenv(f"{p}STATE_SECRET"):
            config.setdefault("oauth", {})["state_secret"] = state_secret
        if access_lifetime := os.getenv(f"{p}ACCESS_TOKEN_LIFETIME"):
            config.setdefault("oauth", {})["access_token_lifetime"] = int(access_lifetime)
        if refresh_lifetime := os.getenv(f"{p}REFRESH_TOKEN_LIFETIME"):
            config.setdefault("oauth", {})["refresh_token_lifetime"] = int(refresh_lifetime)

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _log_configuration(self) -> None:
        """Log the loaded configuration with the state secret redacted."""
        if not self._config:
            return

        config_dict = self._config.model_dump()
        if config_dict["oauth"].get("state_secret"):
            config_dict["oauth"]["state_secret"] = "***REDACTED***"

        logger.info(f"Active configuration: {json.dumps(config_dict, indent=2)}")

    def get_config(self) -> OAuthKeeperConfig:
        """
        Get the loaded configuration.

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> OAuthKeeperConfig:
        """Reload configuration from the same sources."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)

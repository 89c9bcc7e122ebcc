"""
Configuration management for VM archive operations.

This module handles loading and validating configuration from files and environment variables.
"""

import os
import yaml
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .exceptions import ConfigurationError
from .logging import logger


DEFAULT_CONFIG_PATHS = [
    "~/.config/vm-archive/config.yaml",
    "/etc/vm-archive/config.yaml",
    "config.yaml",
]


class AppConfig(BaseModel):
    """Application configuration with Pydantic validation.

    Configuration can be loaded from:
    1. Explicit config file path
    2. Default config file locations
    3. Environment variables (highest priority)

    Environment variables:
    - VM_ARCHIVE_XO_HOST: Xen Orchestra URL to register against
    - VM_ARCHIVE_XO_USER: Xen Orchestra user
    - VM_ARCHIVE_XO_PASSWORD: Xen Orchestra password (prompted by xo-cli if unset)
    - VM_ARCHIVE_SESSION_TTL: Session token lifetime (e.g., "1d", "12h")
    - VM_ARCHIVE_LOCAL_ROOT: Root of the local staging area
    - VM_ARCHIVE_S3_BUCKET: Bucket archives are pushed to and pulled from
    - VM_ARCHIVE_S3_ENDPOINT_URL: Endpoint of an S3-compatible store
    - VM_ARCHIVE_S3_REGION: Bucket region
    - VM_ARCHIVE_RESTORE_DAYS: Days a retrieved archive-class object stays readable
    - VM_ARCHIVE_XO_CLI: xo-cli executable
    - VM_ARCHIVE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = ConfigDict(extra="forbid")  # Reject unknown fields

    xo_host: Optional[str] = None
    xo_user: Optional[str] = None
    xo_password: Optional[str] = None
    session_ttl: str = Field(default="1d", pattern=r"^\d+[smhdwy]?$")
    local_root: str = Field(default="/var/tmp/vm-archive", min_length=1)
    xo_cli: str = Field(default="xo-cli", min_length=1)

    s3_bucket: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None
    restore_days: int = Field(
        default=7, gt=0, description="Days a restored archive-class object stays available"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper()
        if v == "WARN":
            v = "WARNING"
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v

    @field_validator("s3_bucket")
    @classmethod
    def strip_bucket(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().removeprefix("s3://").strip("/")
        return v or None

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError naming every field that is unset."""
        missing = [name for name in fields if not getattr(self, name)]
        if missing:
            logger.error("Missing required configuration", missing=missing)
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}", missing=missing
            )


class ConfigLoader:
    """Loads and validates configuration."""

    ENV_MAPPINGS = {
        "VM_ARCHIVE_XO_HOST": "xo_host",
        "VM_ARCHIVE_XO_USER": "xo_user",
        "VM_ARCHIVE_XO_PASSWORD": "xo_password",
        "VM_ARCHIVE_SESSION_TTL": "session_ttl",
        "VM_ARCHIVE_LOCAL_ROOT": "local_root",
        "VM_ARCHIVE_S3_BUCKET": "s3_bucket",
        "VM_ARCHIVE_S3_ENDPOINT_URL": "s3_endpoint_url",
        "VM_ARCHIVE_S3_REGION": "s3_region",
        "VM_ARCHIVE_RESTORE_DAYS": ("restore_days", int),
        "VM_ARCHIVE_XO_CLI": "xo_cli",
        "VM_ARCHIVE_LOG_LEVEL": "log_level",
    }

    def __init__(self) -> None:
        self.logger = logger

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """
        Load configuration from file and environment variables.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file (explicit path or default locations)
        3. Default values

        Args:
            config_path: Path to configuration file. If None, looks in default locations.

        Returns:
            AppConfig: Loaded configuration
        """
        if config_path:
            config_data = self._load_data_from_file(config_path)
        else:
            config_data = {}
            for path in self.search_paths():
                if os.path.exists(path):
                    self.logger.debug(f"Loading configuration from {path}", path=path)
                    config_data = self._load_data_from_file(path)
                    break

            if not config_data:
                self.logger.debug("No configuration file found, using defaults and environment variables")

        config_data = self._apply_env_overrides(config_data)

        try:
            return AppConfig(**config_data)
        except ValueError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}")

    @staticmethod
    def search_paths() -> List[str]:
        return [os.path.expanduser(path) for path in DEFAULT_CONFIG_PATHS]

    def _apply_env_overrides(self, config_data: dict) -> dict:
        """Apply environment variable overrides to config data."""
        for env_var, mapping in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue
            if isinstance(mapping, tuple):
                config_key, converter = mapping
                try:
                    config_data[config_key] = converter(env_value)
                except (ValueError, TypeError) as e:
                    self.logger.error(f"Invalid value for {env_var}", env_var=env_var)
                    raise ConfigurationError(f"Invalid value for {env_var}: {env_value} ({e})")
            else:
                config_data[mapping] = env_value
            self.logger.debug(f"Applied environment override: {env_var}")

        return config_data

    def _load_data_from_file(self, path: str) -> dict:
        """Load configuration data from a specific file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.logger.error(f"Failed to parse configuration file {path}: {e}", path=path)
            raise ConfigurationError(f"Failed to parse configuration file: {e}")
        except OSError as e:
            self.logger.error(f"Failed to load configuration from {path}: {e}", path=path)
            raise ConfigurationError(f"Failed to load configuration: {e}")

        if data is None:
            return {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration format in {path}")

        return data


# Global config loader
config_loader = ConfigLoader()

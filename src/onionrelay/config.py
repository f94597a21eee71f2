# src/onionrelay/config.py
"""
Configuration module for onionrelay.

Handles loading and validation of configuration from files and environment.
"""

import logging
import os
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .robustness import ErrorType, OnionError

logger = logging.getLogger(__name__)


class NetworkConfig(BaseModel):
    host: str = "localhost"
    bind_host: str = "127.0.0.1"
    registry_port: int = Field(8080, ge=1, le=65535)
    base_onion_router_port: int = Field(4000, ge=1, le=65535)
    base_user_port: int = Field(5000, ge=1, le=65535)
    # Addresses at or above this are end recipients, below it relays.
    recipient_threshold: int | None = None

    @model_validator(mode="after")
    def _default_threshold(self):
        if self.recipient_threshold is None:
            self.recipient_threshold = self.base_user_port
        return self


class CircuitConfig(BaseModel):
    length: int = Field(3, ge=3, le=3)
    seed: int | None = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None


class ConfigModel(BaseModel):
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    circuit: CircuitConfig = Field(default_factory=CircuitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Config:
    """Configuration manager for onionrelay."""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or self._find_config_file()
        self.data: dict[str, Any] = {}
        self.settings: ConfigModel = ConfigModel()
        self.load()

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        candidates = [
            "onionrelay.yaml",
            "onionrelay.yml",
            os.path.expanduser("~/.onionrelay/config.yaml"),
            "/etc/onionrelay/config.yaml",
        ]
        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate
        return "onionrelay.yaml"  # Default

    def load(self):
        """Load configuration from file and environment."""
        if os.path.isfile(self.config_file):
            try:
                with open(self.config_file) as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise OnionError(
                    f"Failed to load config from {self.config_file}: {e}",
                    ErrorType.CONFIG,
                    {"config_file": self.config_file},
                ) from e
            if not isinstance(file_config, dict):
                raise OnionError(
                    f"Config file {self.config_file} must contain a mapping",
                    ErrorType.CONFIG,
                    {"config_file": self.config_file},
                )
            self.data.update(file_config)
            logger.info(f"Loaded config from {self.config_file}")

        self._load_from_env()
        self.validate()

    def _load_from_env(self):
        """Load configuration from environment variables."""
        env_mappings = {
            "ONIONRELAY_HOST": ("network", "host"),
            "ONIONRELAY_BIND_HOST": ("network", "bind_host"),
            "ONIONRELAY_REGISTRY_PORT": ("network", "registry_port"),
            "ONIONRELAY_BASE_ONION_ROUTER_PORT": ("network", "base_onion_router_port"),
            "ONIONRELAY_BASE_USER_PORT": ("network", "base_user_port"),
            "ONIONRELAY_RECIPIENT_THRESHOLD": ("network", "recipient_threshold"),
            "ONIONRELAY_CIRCUIT_SEED": ("circuit", "seed"),
            "ONIONRELAY_LOG_LEVEL": ("logging", "level"),
            "ONIONRELAY_LOG_FILE": ("logging", "file"),
        }

        for env_var, config_path in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                self.set_nested(*config_path, value=value)
                logger.debug(f"Set {'.'.join(config_path)} = {value} from {env_var}")

    def set_nested(self, *keys, value):
        """Set a nested configuration value."""
        d = self.data
        for key in keys[:-1]:
            if key not in d:
                d[key] = {}
            d = d[key]
        d[keys[-1]] = value

    def get(self, *keys, default=None):
        """Get a nested configuration value."""
        d = self.data
        for key in keys:
            if isinstance(d, dict) and key in d:
                d = d[key]
            else:
                return default
        return d

    def validate(self) -> ConfigModel:
        """Validate configuration against schema."""
        try:
            self.settings = ConfigModel.model_validate(self.data)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise OnionError(str(e), ErrorType.CONFIG, {"config_file": self.config_file}) from e
        logger.debug("Configuration validated successfully")
        return self.settings

    def save(self):
        """Save configuration to file."""
        directory = os.path.dirname(self.config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.dump(self.data, f, default_flow_style=False)
        logger.info(f"Saved config to {self.config_file}")

    def __getitem__(self, key):
        return self.data[key]

    def __contains__(self, key):
        return key in self.data

# src/reflectip/config.py
"""
Configuration module for reflectip.

Handles loading and validation of configuration from files and environment.
"""

import logging
import os
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .oracles import ORACLE_GROUPS
from .robustness import ErrorType, ReflectionError
from .tls_http import DEFAULT_BUFFER_SIZE, USER_AGENT

logger = logging.getLogger(__name__)


class ReflectionConfig(BaseModel):
    family: int = Field(4)
    per_query_timeout: Optional[float] = Field(10.0, ge=0)
    oracles: str = Field("all")
    consensus: bool = Field(False)

    @field_validator("family")
    @classmethod
    def _check_family(cls, value):
        if value not in (4, 6):
            raise ValueError("family must be 4 or 6")
        return value

    @field_validator("oracles")
    @classmethod
    def _check_oracles(cls, value):
        if value not in ORACLE_GROUPS:
            raise ValueError(f"oracles must be one of {sorted(ORACLE_GROUPS)}")
        return value


class StunConfig(BaseModel):
    send_timeout: float = Field(5.0, gt=0)
    receive_timeout: float = Field(5.0, gt=0)


class HttpConfig(BaseModel):
    buffer_size: int = Field(DEFAULT_BUFFER_SIZE, ge=1)
    user_agent: str = Field(USER_AGENT)


class LoggingConfig(BaseModel):
    level: str = Field("WARNING")
    file: Optional[str] = Field(None)


class ConfigModel(BaseModel):
    reflection: ReflectionConfig = Field(default_factory=ReflectionConfig)
    stun: StunConfig = Field(default_factory=StunConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Config:
    """Configuration manager for reflectip."""

    ENV_MAPPINGS = {
        "REFLECTIP_FAMILY": ("reflection", "family"),
        "REFLECTIP_TIMEOUT": ("reflection", "per_query_timeout"),
        "REFLECTIP_ORACLES": ("reflection", "oracles"),
        "REFLECTIP_CONSENSUS": ("reflection", "consensus"),
        "REFLECTIP_STUN_SEND_TIMEOUT": ("stun", "send_timeout"),
        "REFLECTIP_STUN_RECEIVE_TIMEOUT": ("stun", "receive_timeout"),
        "REFLECTIP_BUFFER_SIZE": ("http", "buffer_size"),
        "REFLECTIP_LOG_LEVEL": ("logging", "level"),
    }

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or self._find_config_file()
        self.data: dict[str, Any] = {}
        self.settings: ConfigModel = ConfigModel()
        self.load()

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        candidates = [
            "reflectip.yaml",
            "reflectip.yml",
            os.path.expanduser("~/.reflectip/config.yaml"),
            "/etc/reflectip/config.yaml",
        ]
        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate
        return "reflectip.yaml"  # Default

    def load(self):
        """Load configuration from file and environment."""
        if os.path.isfile(self.config_file):
            try:
                with open(self.config_file) as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ReflectionError(
                    f"Failed to load config from {self.config_file}: {e}", ErrorType.CONFIG
                ) from e
            if not isinstance(file_config, dict):
                raise ReflectionError(f"Config file {self.config_file} is not a mapping", ErrorType.CONFIG)
            self.data.update({key: value for key, value in file_config.items() if value is not None})
            logger.info(f"Loaded config from {self.config_file}")

        self._load_from_env()
        self.validate()

    def _load_from_env(self):
        """Load configuration from environment variables."""
        for env_var, config_path in self.ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is not None:
                self.set_nested(*config_path, value=value)
                logger.debug(f"Set {'.'.join(config_path)} = {value} from {env_var}")

    def set_nested(self, *keys, value):
        """Set a nested configuration value."""
        d = self.data
        for key in keys[:-1]:
            # an empty YAML section loads as None
            if not isinstance(d.get(key), dict):
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
            self.settings = ConfigModel(**self.data)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ReflectionError(f"Invalid configuration: {e}", ErrorType.CONFIG) from e
        logger.debug("Configuration validated successfully")
        return self.settings

    def save(self):
        """Save configuration to file."""
        directory = os.path.dirname(self.config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.safe_dump(self.data, f, default_flow_style=False)
        logger.info(f"Saved config to {self.config_file}")

    def __getitem__(self, key):
        return self.data[key]

    def __setitem__(self, key, value):
        self.data[key] = value

    def __contains__(self, key):
        return key in self.data

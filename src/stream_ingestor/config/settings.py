"""Configuration settings using Pydantic for validation."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings
import os
import re

import yaml


class StreamConfig(BaseModel):
    """Streaming endpoint configuration."""
    host: Optional[str] = Field(default=None, description="Streaming API host")
    key: Optional[str] = Field(default=None, description="Client access key")
    scheme: str = Field(default="wss", description="Websocket URL scheme")
    path: str = Field(default="/stream/", description="Streaming endpoint path")
    open_timeout_seconds: float = Field(default=10.0, description="Handshake timeout")
    close_timeout_seconds: float = Field(default=1.0, description="Close handshake timeout")
    ping_interval_seconds: Optional[float] = Field(default=20.0, description="Keepalive ping interval")
    max_message_bytes: int = Field(default=2**20, description="Maximum incoming message size")

    @validator('scheme')
    def validate_scheme(cls, v):
        if v not in ['ws', 'wss']:
            raise ValueError("Scheme must be 'ws' or 'wss'")
        return v

    @validator('path')
    def validate_path(cls, v):
        if not v.startswith('/'):
            return '/' + v
        return v


class SinkConfig(BaseModel):
    """PostgreSQL sink configuration."""
    dsn: Optional[str] = Field(default=None, description="PostgreSQL connection string")
    table: str = Field(default="posts", description="Table receiving events")
    pool_min_size: int = Field(default=1, description="Minimum pool connections")
    pool_max_size: int = Field(default=4, description="Maximum pool connections")
    command_timeout_seconds: float = Field(default=30.0, description="Statement timeout")

    @validator('table')
    def validate_table(cls, v):
        if not re.fullmatch(r'[A-Za-z_][A-Za-z0-9_]*', v):
            raise ValueError("Table must be a plain SQL identifier")
        return v


class ShutdownConfig(BaseModel):
    """Graceful shutdown configuration."""
    timeout_seconds: float = Field(default=1.0, description="Wait for the loop after sending close")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @validator('format')
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Format must be 'json' or 'text'")
        return v.lower()


REQUIRED_FIELDS = {
    "host": ("stream", "host"),
    "key": ("stream", "key"),
    "dsn": ("sink", "dsn"),
}


class IngestorSettings(BaseSettings):
    """Main ingestor service settings."""

    service_name: str = Field(default="stream-ingestor", description="Service name")

    stream: StreamConfig = Field(default_factory=StreamConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    shutdown: ShutdownConfig = Field(default_factory=ShutdownConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        env_prefix = "INGESTOR_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"
        case_sensitive = False

    def missing_required(self) -> List[str]:
        """Return the names of required values that are not set."""
        missing = []
        for name, (section, field) in REQUIRED_FIELDS.items():
            if not getattr(getattr(self, section), field):
                missing.append(name)
        return missing


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``overrides`` into ``base``; ``None`` leaves are skipped."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict):
            section = merged.get(key)
            merged[key] = _merge(section if isinstance(section, dict) else {}, value)
        elif value is not None:
            merged[key] = value
    return merged


def _environment_values() -> Dict[str, Any]:
    """Values set through ``INGESTOR_*`` variables or the .env file only."""
    return IngestorSettings().model_dump(exclude_unset=True)


def load_settings(config_file: Optional[str] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> IngestorSettings:
    """
    Load settings from a config file, environment variables and overrides.

    Sources are layered YAML file, then environment, then ``overrides``;
    later layers win per field. Missing required values are not an error
    here; call ``IngestorSettings.missing_required`` to check.

    Args:
        config_file: Path to YAML configuration file
        overrides: Nested dict of values, typically from command line flags

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    config_data: Dict[str, Any] = {}

    if config_file:
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Configuration file not found: {config_file}")

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)

    config_data = _merge(config_data, _environment_values())
    if overrides:
        config_data = _merge(config_data, overrides)

    return IngestorSettings(**config_data)

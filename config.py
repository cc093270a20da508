"""Configuration management for Repo Mirror."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from s3_mirror.bucket import BucketURL

DEFAULT_CONFIG_PATH = "mirror.json"
DEFAULT_GIT_PATH = "/usr/bin/git"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


class MirrorConfig(BaseModel):
    """What to mirror and where to."""
    model_config = ConfigDict(frozen=True)

    git_path: str = DEFAULT_GIT_PATH
    source_dir: str = "."
    aws_profile: Optional[str] = None
    aws_region: Optional[str] = None
    bucket_url: str
    revision: str = "HEAD"

    @field_validator('git_path', 'source_dir', mode='before')
    @classmethod
    def expand_paths(cls, v):
        """Expand environment variables and user home directory."""
        if isinstance(v, str):
            return os.path.expanduser(os.path.expandvars(v))
        return v

    @field_validator('source_dir', 'git_path', 'revision')
    @classmethod
    def not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator('aws_profile', 'aws_region', mode='before')
    @classmethod
    def blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('bucket_url')
    @classmethod
    def valid_bucket_url(cls, v):
        BucketURL.parse(v)
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None


class Config(BaseModel):
    """Main configuration model."""
    mirror: MirrorConfig
    logging: LoggingConfig = LoggingConfig()


def _read_config_file(config_path: str) -> Dict[str, Any]:
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration in {config_path} must be a JSON object")

    # Drop "_comment" style keys
    return {k: v for k, v in config_data.items() if not k.startswith('_')}


def load_config(config_path: str = DEFAULT_CONFIG_PATH,
                overrides: Optional[Dict[str, Any]] = None,
                required: bool = True) -> Config:
    """Load configuration from JSON file, then apply overrides.

    Args:
        config_path: Path to the JSON configuration file
        overrides: Mirror settings that replace file values (None values ignored)
        required: If False, a missing file is treated as empty

    Raises:
        FileNotFoundError: If the file is missing and required
        ConfigError: If the file or resulting configuration is invalid
    """
    try:
        config_data = _read_config_file(config_path)
    except FileNotFoundError:
        if required:
            raise
        config_data = {}

    mirror_data = dict(config_data.get('mirror') or {})
    mirror_data = {k: v for k, v in mirror_data.items() if not k.startswith('_')}
    if overrides:
        mirror_data.update({k: v for k, v in overrides.items() if v is not None})
    config_data['mirror'] = mirror_data

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def create_default_config(config_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Create a default configuration file."""
    default_config = {
        "_comment": "Repo Mirror configuration. Command-line options override these values.",
        "mirror": {
            "git_path": DEFAULT_GIT_PATH,
            "source_dir": ".",
            "aws_profile": "default",
            "aws_region": "us-east-1",
            "bucket_url": "s3://your-bucket-name",
            "revision": "HEAD"
        },
        "logging": {
            "level": "INFO",
            "file": None
        }
    }

    with open(config_path, 'w') as f:
        json.dump(default_config, f, indent=2)

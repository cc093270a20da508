"""Shared utilities for CLI commands."""

import logging
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

import click

from config import DEFAULT_CONFIG_PATH, Config, load_config

SIZE_UNITS = ('B', 'KB', 'MB', 'GB', 'TB', 'PB')


def load_app_config(ctx: click.Context, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration for a command.

    A config file named with --config must exist; the default mirror.json is
    optional when the command line supplies every required value.

    Args:
        ctx: Click context holding config_path
        overrides: Mirror settings from command-line options

    Returns:
        Validated configuration

    Raises:
        FileNotFoundError: If an explicit config file is missing
        ConfigError: If the resulting configuration is invalid
    """
    config_path = ctx.obj.get('config_path')
    if config_path:
        return load_config(config_path, overrides=overrides)
    return load_config(DEFAULT_CONFIG_PATH, overrides=overrides, required=False)


def setup_logging(config: Optional[Config] = None, verbose: bool = False):
    """Set up logging: progress notices on stderr, optional log file.

    Args:
        config: Application configuration (for level and log file)
        verbose: Whether to log at DEBUG level
    """
    level_name = config.logging.level if config else 'INFO'
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Clear any existing handlers
    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config and config.logging.file:
        log_file = Path(config.logging.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet all libraries
    for name in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)


def format_size(num_bytes: int) -> str:
    """Human-readable size, e.g. ``2.00 KB``."""
    if not num_bytes:
        return "0 B"
    size = float(num_bytes)
    for unit in SIZE_UNITS[:-1]:
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} {SIZE_UNITS[-1]}"


def handle_error(error: Exception, verbose: bool = False):
    """Print a failed command's error on stderr and exit with status 1.

    With --verbose the traceback follows, including any chained cause such
    as the botocore or tarfile error behind a stage-annotated failure.
    """
    click.echo(f"Error: {error}", err=True)
    if verbose:
        lines = traceback.format_exception(type(error), error, error.__traceback__)
        click.echo(''.join(lines), err=True)
    sys.exit(1)

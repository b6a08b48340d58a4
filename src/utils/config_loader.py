"""Utility to load application configuration from an optional YAML file"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from src.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "refresh.yaml"


def load_app_config(config_path: str | Path | None = None) -> AppConfig:
    """
    Load configuration, overlaying values from a YAML file onto env/.env settings

    Keys in the file are AppConfig field names. Values from the file take
    precedence over environment variables; anything the file leaves out falls
    back to the environment and then to the defaults.

    Args:
        config_path: Path to the YAML file. Defaults to $REFRESH_CONFIG_FILE,
            then refresh.yaml in the working directory. The default file is
            optional; an explicitly requested one must exist.

    Returns:
        AppConfig object

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist
        ValueError: If the file is not valid YAML or fails validation
    """
    explicit = config_path is not None or "REFRESH_CONFIG_FILE" in os.environ
    config_path = Path(config_path or os.getenv("REFRESH_CONFIG_FILE", DEFAULT_CONFIG_FILE))

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Refresh configuration file not found: {config_path}")
        return AppConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in refresh configuration: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Refresh configuration must be a mapping of setting names to values")

    try:
        app_config = AppConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Failed to load refresh configuration: {e}") from e

    logger.info(f"Loaded refresh configuration from {config_path}")
    logger.info(f"  Database: {app_config.db_name}")
    logger.info(f"  Source file: {app_config.source_path}")
    logger.info(f"  Refresh interval: {app_config.refresh_interval_seconds}s")

    return app_config

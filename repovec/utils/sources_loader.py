"""Utility to load sources configuration from YAML file"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from repovec.exceptions import ConfigurationError
from repovec.models.sources_config import SourcesConfig

logger = logging.getLogger(__name__)


def load_sources_config(config_path: str | Path = "sources.yaml") -> SourcesConfig:
    """
    Load sources configuration from YAML file

    Args:
        config_path: Path to sources.yaml file (default: sources.yaml in project root)

    Returns:
        SourcesConfig object

    Raises:
        ConfigurationError: If the file is missing, empty, or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(
            f"Sources configuration file not found: {config_path}\n"
            f"Please create a sources.yaml file. See sources.yaml.example for reference."
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in sources configuration: {e}") from e

    if not data:
        raise ConfigurationError("Sources configuration file is empty")

    try:
        sources_config = SourcesConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Failed to load sources configuration: {e}") from e

    # Allow environment variable to override refresh.enabled
    refresh_enabled_env = os.getenv("REFRESH_ENABLED")
    if refresh_enabled_env is not None:
        refresh_enabled = refresh_enabled_env.lower() in ("true", "1", "yes")
        if sources_config.refresh.enabled != refresh_enabled:
            logger.info(
                f"Overriding refresh.enabled from env: {refresh_enabled} "
                f"(was: {sources_config.refresh.enabled})"
            )
            sources_config.refresh.enabled = refresh_enabled

    logger.info(f"Loaded sources configuration from {config_path}")
    logger.info(f"  Enabled repositories: {len(sources_config.get_enabled_repositories())}")
    logger.info(f"  Scheduled refresh enabled: {sources_config.refresh.enabled}")

    return sources_config

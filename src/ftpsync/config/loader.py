"""Configuration loader for JSON/YAML files and environment variables."""

import os
import json
import yaml
from pathlib import Path
from typing import Dict, Any, List, Union

from pydantic import ValidationError

from .schema import SyncConfig
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


class ConfigLoader:
    """Loads and validates sync job configuration from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> SyncConfig:
        """Load configuration from JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated SyncConfig object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {file_path}")

        config = self.load_from_dict(data)

        self.logger.info(
            "Configuration loaded successfully",
            roots_count=len(config.roots),
            remote_path=config.remote_path
        )

        return config

    def load_from_dict(self, data: Dict[str, Any]) -> SyncConfig:
        """Load configuration from dictionary.

        Args:
            data: Configuration data as dictionary

        Returns:
            Validated SyncConfig object
        """
        data = self._apply_env_overrides(data)

        try:
            return SyncConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        Environment variables use the format: FTPSYNC_<KEY>
        For example: FTPSYNC_REMOTE_PATH, FTPSYNC_FORCE_REMOTE_CHECK
        """
        env_overrides = {}

        if os.getenv('FTPSYNC_REMOTE_PATH'):
            env_overrides['remote_path'] = os.getenv('FTPSYNC_REMOTE_PATH')

        if os.getenv('FTPSYNC_FORCE_REMOTE_CHECK'):
            env_overrides['force_remote_check'] = os.getenv('FTPSYNC_FORCE_REMOTE_CHECK').lower() in ['true', '1', 'yes']

        if os.getenv('FTPSYNC_PURGE'):
            env_overrides['purge'] = os.getenv('FTPSYNC_PURGE').lower()

        if os.getenv('FTPSYNC_LOG_LEVEL'):
            env_overrides['log_level'] = os.getenv('FTPSYNC_LOG_LEVEL')

        if env_overrides:
            self.logger.info("Applied environment variable overrides", overrides=list(env_overrides.keys()))
            data = {**data, **env_overrides}

        return data

    def validate_config(self, config: SyncConfig) -> List[str]:
        """Validate configuration and return list of warnings.

        Args:
            config: Configuration to validate

        Returns:
            List of validation warnings
        """
        warnings = []

        normalized = [os.path.normpath(root) for root in config.roots]
        if len(normalized) != len(set(normalized)):
            warnings.append("Duplicate root directories found")

        for root in normalized:
            if not os.path.isdir(root):
                warnings.append(f"Root directory does not exist: {root}")

        overlap = set(config.end_files) & set(config.blocked_files)
        if overlap:
            warnings.append(f"{len(overlap)} files are both deferred and blocked")

        if warnings:
            self.logger.warning("Configuration validation warnings", warnings=warnings)
        else:
            self.logger.info("Configuration validation passed")

        return warnings


def load_config_from_env() -> SyncConfig:
    """Load configuration from the environment and default files.

    Looks for configuration files in this order:
    1. FTPSYNC_CONFIG_FILE environment variable
    2. ./config/ftpsync.yaml
    3. ./config/ftpsync.json
    4. ./ftpsync.yaml
    5. ./ftpsync.json
    """
    loader = ConfigLoader()
    logger = get_logger("load_config_from_env")

    config_file = os.getenv('FTPSYNC_CONFIG_FILE')
    if config_file:
        if os.path.exists(config_file):
            return loader.load_from_file(config_file)
        logger.warning("Specified config file not found", file=config_file)

    possible_files = [
        './config/ftpsync.yaml',
        './config/ftpsync.yml',
        './config/ftpsync.json',
        './ftpsync.yaml',
        './ftpsync.yml',
        './ftpsync.json'
    ]

    for file_path in possible_files:
        if os.path.exists(file_path):
            logger.info("Found configuration file", file=file_path)
            return loader.load_from_file(file_path)

    raise ConfigurationError("No configuration file found")

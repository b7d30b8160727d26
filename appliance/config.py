"""
Configuration Management for the Market Appliance client.

This module handles the authority URI, the worker working directory, the
refresh timing and logging settings, with support for a configuration file,
environment variables and command line overrides.
"""

import os
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from shared.exceptions import ConfigurationError, ErrorCode
from shared.interfaces import IConfigurationManager

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.config' / 'market-appliance' / 'appliance.conf'


class ApplianceConfiguration(IConfigurationManager):
    """
    Configuration manager for the Market Appliance client.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    ENV_MAPPINGS = {
        'MARKET_URI': ('market', 'uri'),
        'MARKET_TIMEOUT': ('market', 'timeout'),
        'WORKER_PATH': ('worker', 'repo_path'),
        'LOTUS_WORKER_PATH': ('worker', 'repo_path'),
        'MARKET_POLL_INTERVAL': ('refresh', 'poll_interval'),
        'MARKET_REFRESH_THRESHOLD': ('refresh', 'refresh_threshold'),
        'MARKET_LOG_LEVEL': ('logging', 'level'),
        'MARKET_LOG_FORMAT': ('logging', 'format'),
    }

    DEFAULTS = {
        'market': {
            'uri': 'http://localhost:3000',
            'timeout': 30.0,
        },
        'worker': {
            'repo_path': '~/.lotusworker',
        },
        'refresh': {
            'poll_interval': 600,  # 10 minutes
            'refresh_threshold': 1800,  # 30 minutes
        },
        'logging': {
            'level': 'INFO',
            'format': 'standard',
            'file': None,
        },
    }

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self._config_file = config_file or str(DEFAULT_CONFIG_PATH)
        self._explicit_file = config_file is not None
        self._environ = os.environ if environ is None else environ
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.debug(f"Configuration loaded from: {self._config_file}")
        elif self._explicit_file:
            raise ConfigurationError(
                f"Configuration file not found: {self._config_file}",
                ErrorCode.CONFIG_INVALID_FORMAT
            )

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numeric values
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = self._environ.get(env_var)
            if value is None:
                continue

            # LOTUS_WORKER_PATH wins over the deprecated WORKER_PATH
            if env_var == 'WORKER_PATH' and self._environ.get('LOTUS_WORKER_PATH'):
                continue

            section_data = self._config_data.setdefault(section, {})
            if value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        for section, section_defaults in self.DEFAULTS.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                section_data.setdefault(key, default_value)

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value; None is ignored
        """
        if value is not None:
            self._overrides[key] = value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def get_market_uri(self) -> str:
        """Get the authority base URI."""
        return str(self.get_config('market.uri')).rstrip('/')

    def get_repo_path(self) -> str:
        """Get the worker working directory (unexpanded)."""
        return str(self.get_config('worker.repo_path'))

    def get_timeout(self) -> float:
        """Get the per-request timeout in seconds."""
        return self._get_positive_number('market.timeout')

    def get_poll_interval(self) -> timedelta:
        return timedelta(seconds=self._get_positive_number('refresh.poll_interval'))

    def get_refresh_threshold(self) -> timedelta:
        return timedelta(seconds=self._get_positive_number('refresh.refresh_threshold'))

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def _get_positive_number(self, key: str) -> float:
        value = self.get_config(key)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r}",
                config_key=key,
                cause=e
            )
        if number <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value!r}", config_key=key)
        return number

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data with overrides applied."""
        result = {section: dict(data) for section, data in self._config_data.items()}
        for key, value in self._overrides.items():
            section, _, config_key = key.partition('.')
            result.setdefault(section, {})[config_key] = value
        return result

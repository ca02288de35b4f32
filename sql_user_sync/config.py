"""
Configuration loading and management for SQL User Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'backend.password': 'BACKEND_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file is empty or not a mapping: {self.config_path}")

        # Apply environment variable overrides
        self._apply_env_overrides()

        # Validate configuration
        self._validate()

        # Apply defaults
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

        # Apply identity-specific password overrides
        identities = self.config.get('identities') or []
        for identity in identities:
            if not isinstance(identity, dict):
                continue
            account = str(identity.get('principal', '')).split('@')[0]
            if not account:
                continue
            env_var = f"{account.upper()}_PASSWORD"
            env_value = os.getenv(env_var)
            if env_value:
                identity['password'] = env_value
                logger.debug(f"Applied environment override for {account} password")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        # Validate backend configuration
        backend_config = self.config.get('backend')
        if not isinstance(backend_config, dict):
            errors.append("Missing required section: backend")
            backend_config = {}

        if not backend_config.get('url'):
            errors.append("Missing required backend field: url")

        if 'disable_flag' in backend_config and not backend_config.get('disable_flag'):
            errors.append("backend.disable_flag must not be empty")

        sql_overrides = backend_config.get('sql', {})
        if sql_overrides and not isinstance(sql_overrides, dict):
            errors.append("backend.sql must be a mapping of statement name to SQL")

        # Validate identities
        identities = self.config.get('identities') or []
        if not isinstance(identities, list):
            errors.append("identities must be a list")
            identities = []

        seen = set()
        for i, identity in enumerate(identities):
            prefix = f"identities[{i}]"
            if not isinstance(identity, dict):
                errors.append(f"{prefix} must be a mapping")
                continue

            principal = identity.get('principal')
            if not principal:
                errors.append(f"Missing required field {prefix}.principal")
            elif str(principal).count('@') != 1:
                errors.append(f"{prefix}.principal must be of the form user@host: {principal}")
            elif principal in seen:
                errors.append(f"Duplicate principal {principal} in {prefix}")
            else:
                seen.add(principal)

            grants = identity.get('grants', [])
            if grants and not isinstance(grants, (list, str)):
                errors.append(f"{prefix}.grants must be a list or a newline separated string")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        # Backend defaults
        backend_defaults = {
            'connect_timeout': 10,
            'enable_disable': False,
            'disable_flag': '!',
            'password_encoding': 'mysql-native',
            'charset': 'utf-8',
            'sql': {}
        }
        backend_config = self.config.setdefault('backend', {})
        for key, value in backend_defaults.items():
            backend_config.setdefault(key, value)

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Error handling defaults
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
            'retry_backoff': 1.0,
            'max_errors': 5
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # Identity defaults
        if self.config.get('identities') is None:
            self.config['identities'] = []
        for identity in self.config['identities']:
            identity.setdefault('disabled', False)
            identity.setdefault('grants', [])


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()

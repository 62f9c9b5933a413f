"""
Configuration loading and management for Roster Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from dataclasses import fields
from typing import Dict, Any, Optional

from roster_sync.normalizer import RosterFieldMap

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def normalize_org_unit(path: str) -> str:
    """Drop a trailing slash so prefix checks match the directory's paths."""
    return str(path).rstrip('/') or '/'


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'roster.password': 'ROSTER_PASSWORD',
        'directory.auth.token': 'DIRECTORY_TOKEN',
        'directory.auth.client_secret': 'DIRECTORY_CLIENT_SECRET',
        'notifications.smtp_password': 'SMTP_PASSWORD',
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
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
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

        roster_config = self.config.get('roster') or {}
        for field in ('url', 'username', 'password'):
            if not roster_config.get(field):
                errors.append(f"Missing required roster field: {field}")

        field_names = roster_config.get('fields')
        if field_names is not None:
            if not isinstance(field_names, dict):
                errors.append("roster.fields must be a mapping")
            else:
                known = {f.name for f in fields(RosterFieldMap)}
                for key in sorted(set(field_names) - known):
                    errors.append(f"Unknown roster.fields key: {key}")

        directory_config = self.config.get('directory') or {}
        auth = directory_config.get('auth') or {}
        if not auth.get('method'):
            errors.append("Missing directory.auth.method")

        sync_config = self.config.get('sync') or {}
        for field in ('failsafe_record_change_limit', 'min_safe_user_count'):
            value = sync_config.get(field)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
                errors.append(f"sync.{field} must be a non-negative integer")

        org_units = sync_config.get('org_units') or {}
        for unit in ('assigned', 'default', 'disabled'):
            path = org_units.get(unit)
            if path is not None and not str(path).startswith('/'):
                errors.append(f"sync.org_units.{unit} must be an absolute path starting with '/'")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    @staticmethod
    def _section(parent: Dict[str, Any], name: str) -> Dict[str, Any]:
        """Return parent[name], replacing a missing or empty section with {}."""
        if not isinstance(parent.get(name), dict):
            parent[name] = {}
        return parent[name]

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        roster_defaults = {
            'entries_key': 'Report_Entry',
            'email_field': 'syncEmail',
            'verify_ssl': True,
            'timeout': 60,
        }
        roster_config = self._section(self.config, 'roster')
        for key, value in roster_defaults.items():
            roster_config.setdefault(key, value)

        directory_defaults = {
            'module': 'google_workspace',
            'base_url': 'https://admin.googleapis.com',
            'customer': 'my_customer',
            'custom_schema': 'Workday',
            'verify_ssl': True,
        }
        directory_config = self._section(self.config, 'directory')
        for key, value in directory_defaults.items():
            directory_config.setdefault(key, value)

        sync_defaults = {
            'apply_changes': False,
            'failsafe_record_change_limit': 25,
            'min_safe_user_count': 1000,
            'apply_email_updates': False,
            'double_count_creations': False,
            'grace_period_enabled': True,
        }
        sync_config = self._section(self.config, 'sync')
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)

        org_unit_defaults = {
            'assigned': '/Users/Assigned',
            'default': '/Users',
            'disabled': '/Disabled',
        }
        org_units = self._section(sync_config, 'org_units')
        for key, value in org_unit_defaults.items():
            org_units[key] = normalize_org_unit(org_units.get(key) or value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self._section(self.config, 'logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
        }
        error_config = self._section(self.config, 'error_handling')
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self._section(self.config, 'notifications')
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


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

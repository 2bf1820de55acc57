"""Configuration management for environment provisioning.

This module handles loading the optional ``aws-envs.yaml`` settings file
from the project directory, validating it, and applying environment
variable overrides. Provisioning results live in the JSON state file
(see ``starter_envs.core.state``), not here.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional
import yaml

from starter_envs.core.errors import ProvisioningError
from starter_envs.core.models import Environment


DEFAULT_CONFIG_FILE = "aws-envs.yaml"


class ConfigurationError(ProvisioningError):
    """Raised when configuration is invalid or missing."""

    pass


class Configuration:
    """Configuration management with YAML loading and validation.

    Every key is optional; a project directory without ``aws-envs.yaml``
    yields an empty configuration with defaults.
    """

    def __init__(self, config_path: Optional[str] = None,
                 project_dir: Optional[str] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_path: Optional explicit path to configuration file.
                         Must exist when given.
            project_dir: Directory searched for aws-envs.yaml when
                         config_path is None (default: current directory)

        Raises:
            ConfigurationError: When configuration file is invalid
        """
        self._config: Dict[str, Any] = {}
        self._config_path = self._resolve_config_path(config_path, project_dir)
        if self._config_path is not None:
            self._load_configuration()
        self._apply_environment_overrides()
        self._validate_configuration()

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def _resolve_config_path(self, config_path: Optional[str],
                             project_dir: Optional[str]) -> Optional[Path]:
        """Resolve configuration file path.

        Raises:
            ConfigurationError: When an explicit path does not exist
        """
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {path}. "
                    "Please create a configuration file or specify a valid path."
                )
            return path

        path = Path(project_dir or ".") / DEFAULT_CONFIG_FILE
        return path if path.exists() else None

    def _load_configuration(self) -> None:
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: When YAML file is invalid
        """
        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {self._config_path}: {e}"
            )
        except IOError as e:
            raise ConfigurationError(
                f"Unable to read configuration file {self._config_path}: {e}"
            )

        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Configuration file {self._config_path} must contain a mapping"
            )
        self._config = loaded

    def _apply_environment_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if "AWS_REGION" in os.environ:
            self._set_nested_value("aws.region", os.environ["AWS_REGION"])

        if "AWS_PROFILE" in os.environ:
            self._set_nested_value("aws.profile_name", os.environ["AWS_PROFILE"])

        if "GITHUB_TOKEN" in os.environ:
            self._set_nested_value("github.token", os.environ["GITHUB_TOKEN"])

    def _validate_configuration(self) -> None:
        """Validate types of known configuration fields.

        Raises:
            ConfigurationError: When a field has the wrong type
        """
        for key in ("retry.max_retries", "retry.base_delay_ms"):
            value = self.get(key)
            if value is not None and (
                not isinstance(value, int) or isinstance(value, bool) or value < 0
            ):
                raise ConfigurationError(
                    f"Field '{key}' must be a non-negative integer"
                )

        bootstrap = self.get("cdk.bootstrap")
        if bootstrap is not None and not isinstance(bootstrap, bool):
            raise ConfigurationError("Field 'cdk.bootstrap' must be true or false")

        email = self.get("accounts.email")
        if email is not None and (not isinstance(email, str) or "@" not in email):
            raise ConfigurationError(
                "Field 'accounts.email' must be a valid email address"
            )

        emails = self.get("accounts.emails")
        if emails is not None:
            if not isinstance(emails, dict):
                raise ConfigurationError("Field 'accounts.emails' must be a mapping")
            for env_name in emails:
                try:
                    Environment.parse(str(env_name))
                except ValueError as e:
                    raise ConfigurationError(f"Field 'accounts.emails': {e}")

    def _set_nested_value(self, key_path: str, value: Any) -> None:
        """Set nested configuration value using dot notation.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            value: Value to set
        """
        keys = key_path.split(".")
        current = self._config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split(".")
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_profile_name(self) -> Optional[str]:
        return self.get("aws.profile_name")

    def get_region(self) -> Optional[str]:
        """Get AWS region override (the state file's awsRegion applies otherwise)."""
        return self.get("aws.region")

    def get_root_email(self) -> Optional[str]:
        return self.get("accounts.email")

    def get_environment_emails(self) -> Dict[Environment, str]:
        """Get explicitly configured per-environment account emails."""
        emails = self.get("accounts.emails") or {}
        return {Environment.parse(str(env)): str(email) for env, email in emails.items()}

    def get_retry_settings(self) -> Dict[str, int]:
        return {
            "max_retries": self.get("retry.max_retries", 5),
            "base_delay_ms": self.get("retry.base_delay_ms", 1000),
        }

    def get_github_repo(self) -> Optional[str]:
        return self.get("github.repo")

    def get_github_token(self) -> Optional[str]:
        return self.get("github.token")

    def cdk_bootstrap_enabled(self) -> bool:
        return bool(self.get("cdk.bootstrap", False))

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary.

        Returns:
            Complete configuration dictionary
        """
        return self._config.copy()

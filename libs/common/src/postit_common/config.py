"""
Configuration loading and management for PostIt services.
"""

import argparse
import json
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union

import toml
from pydantic import BaseModel, ConfigDict, ValidationError

# Note: Logging is configured by the CLI or service entry point
logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Exception raised for configuration errors."""
    pass


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override values taking precedence.

    Args:
        base: Base dictionary
        override: Dictionary with values that override base

    Returns:
        Merged dictionary
    """
    result = deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            if not value and result[key]:
                logger.warning(f"Empty config section '[{key}]' is clearing defaults. "
                               f"Remove the section from the config file to use defaults.")
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def namespace_to_dict(namespace: argparse.Namespace) -> Dict[str, Any]:
    """Convert an argparse.Namespace to a nested dictionary.

    Dotted destinations ('overlay.interval') become nested sections. Only
    arguments recorded as explicitly set on the command line are included,
    so parser defaults never mask values from the config file.
    """
    result: Dict[str, Any] = {}
    explicitly_set = getattr(namespace, '_explicitly_set', set())

    for key, value in vars(namespace).items():
        if value is None or key not in explicitly_set:
            continue

        parts = key.split('.')
        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    return result


def load_config_with_overrides(
    override_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[Union[str, Path]] = None,
    default_config: Optional[Dict[str, Any]] = None,
    args: Optional[argparse.Namespace] = None
) -> Dict[str, Any]:
    """Load configuration with flexible overrides and defaults.

    The priority order is:
    1. Command line args (from args parameter, highest priority)
    2. Provided override_config dictionary
    3. Config loaded from config_file
    4. Default config (lowest priority)

    Returns:
        Merged configuration dictionary
    """
    config = {} if default_config is None else deepcopy(default_config)

    if config_file is not None:
        config_path = Path(config_file)
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    file_config = toml.load(f)
                config = deep_merge(config, file_config)
                logger.info(f"Loaded configuration from {config_path}")
                logger.debug(config)
            except (OSError, toml.TomlDecodeError) as e:
                raise ConfigError(f"Error loading config from {config_file}: {e}") from e
        else:
            logger.warning(f"Config file not found: {config_file}")

    if override_config is not None:
        config = deep_merge(config, override_config)

    if args is not None:
        config = deep_merge(config, namespace_to_dict(args))

    return config


T = TypeVar('T', bound='BaseConfig')


class BaseConfig(BaseModel):
    """Base configuration model with loading methods.

    Extend this class with specific configuration sections for each service.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid',
        str_strip_whitespace=True
    )

    @classmethod
    def _default_env_prefix(cls) -> Optional[str]:
        """Derive the env prefix from the service_name default (postit_core -> POSTIT)."""
        field = cls.model_fields.get('service_name')
        default_value = getattr(field, 'default', None) if field else None
        if default_value and isinstance(default_value, str):
            return default_value.split('_')[0].upper()
        return None

    @classmethod
    def _extract_env_overrides(cls, env_prefix: Optional[str] = None) -> Dict[str, Any]:
        """Extract configuration overrides from environment variables.

        Examples:
            POSTIT_SERVICE_NAME="kiosk"       -> {"service_name": "kiosk"}
            POSTIT_OVERLAY_INTERVAL="10"      -> {"overlay": {"interval": 10}}
            POSTIT_DEPTH_MORPHOLOGY_CLOSE="0" -> {"depth_morphology": {"close": False}}

        Variables that do not name a known field (POSTIT_ENV, secrets...) are ignored.
        """
        env_prefix = env_prefix or cls._default_env_prefix()
        if not env_prefix:
            return {}

        overrides: Dict[str, Any] = {}
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(env_prefix + '_'):
                continue
            config_key = env_key[len(env_prefix) + 1:].lower()
            mapped = cls._map_env_key_to_config(config_key, cls._convert_env_value(env_value))
            if mapped:
                overrides = deep_merge(overrides, mapped)
            else:
                logger.debug(f"Ignoring environment variable {env_key}: no matching config field")

        return overrides

    @classmethod
    def _map_env_key_to_config(cls, env_key: str, value: Any) -> Optional[Dict[str, Any]]:
        """Map a lowercased env key onto the model structure, or None if it matches nothing."""
        model_fields = cls.model_fields
        if env_key in model_fields:
            return {env_key: value}

        # longest section names first so 'depth_morphology_close' beats 'depth'
        for field_name in sorted(model_fields, key=len, reverse=True):
            field_type = model_fields[field_name].annotation
            nested_fields = getattr(field_type, 'model_fields', None)
            if not nested_fields or not env_key.startswith(field_name + '_'):
                continue
            nested_key = env_key[len(field_name) + 1:]
            if nested_key in nested_fields:
                return {field_name: {nested_key: value}}

        return None

    @staticmethod
    def _convert_env_value(value: str) -> Any:
        """Convert environment variable string to appropriate Python type."""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if '.' not in value:
                return int(value)
            return float(value)
        except ValueError:
            pass

        if value.startswith(('[', '{')):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    @classmethod
    def from_overrides(cls: Type[T],
                       override_config: Optional[Dict[str, Any]] = None,
                       config_file: Optional[Union[str, Path]] = None,
                       default_config: Optional[Dict[str, Any]] = None,
                       args: Optional[argparse.Namespace] = None,
                       env_prefix: Optional[str] = None) -> T:
        """Create a Config instance from multiple sources with flexible overrides.

        The priority order for configuration is:
        1. Command line args (from args parameter, highest priority)
        2. Provided override_config dictionary
        3. Environment variables (with env_prefix)
        4. Config loaded from config_file
        5. Default config (lowest priority)

        Raises:
            ConfigError: If the merged configuration doesn't match the model

        Examples:
            config = CoreServiceConfig.from_overrides(config_file="config.toml")

            config = CoreServiceConfig.from_overrides(
                config_file="config.toml",
                override_config={"stream": {"kind": "color"}},
                args=parsed_args
            )
        """
        env_overrides = cls._extract_env_overrides(env_prefix)

        if env_overrides and override_config:
            merged_overrides = deep_merge(env_overrides, override_config)
        else:
            merged_overrides = override_config or env_overrides or None

        merged_config = load_config_with_overrides(
            override_config=merged_overrides,
            config_file=config_file,
            default_config=default_config,
            args=args
        )

        try:
            return cls(**merged_config)
        except ValidationError as e:
            logger.error(f"Configuration validation error: {e.errors()}")
            raise ConfigError(f"Invalid configuration: {e}") from e

    def __str__(self) -> str:
        return f"{self.__class__.__name__}:\n{self.model_dump_json(indent=2)}"

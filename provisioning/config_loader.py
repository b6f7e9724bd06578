# provisioning/config_loader.py
# -*- coding: utf-8 -*-
"""
Configuration loader for the entrypoint.

Handles loading settings from Pydantic model defaults, an optional YAML
file, environment variables and command-line arguments, applying this
order of precedence:
1. Pydantic Model Defaults
2. YAML Configuration File
3. Environment Variables
4. Command-Line Arguments

The environment is read once here. Components receive the resulting
settings objects and never consult ``os.environ`` themselves.
"""

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "BUNDLE_CONFIG_FILE"
CONFIG_FILE_DEFAULT = Path("/etc/bundle-entrypoint/config.yaml")

SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def _deep_update(
    source: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Recursively updates ``source`` with values from ``overrides``.

    Nested dictionaries are merged key by key; any other value replaces the
    one in ``source``. ``None`` values in ``overrides`` never replace an
    existing value.

    Parameters:
        source: Dict[str, Any]
            The dictionary to be updated. Modified in place.
        overrides: Dict[str, Any]
            Values to merge into ``source``.

    Returns:
        Dict[str, Any]: The updated ``source``.
    """
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and key in source
            and isinstance(source[key], dict)
        ):
            source[key] = _deep_update(source[key], value)
        elif value is not None:
            source[key] = value
        elif key not in source:
            source[key] = value
    return source


def resolve_config_path(
    config_file_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Optional[Path]:
    """Explicit path, then ``BUNDLE_CONFIG_FILE``, then the default location if it exists."""
    environ = os.environ if environ is None else environ
    if config_file_path:
        return Path(config_file_path)
    if environ.get(CONFIG_FILE_ENV):
        return Path(environ[CONFIG_FILE_ENV])
    if CONFIG_FILE_DEFAULT.is_file():
        return CONFIG_FILE_DEFAULT
    return None


def load_yaml_config(
    config_path: Optional[Path],
    current_logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Reads the YAML configuration file.

    A missing, unreadable or malformed file yields an empty mapping and a
    warning; configuration then comes from defaults and the environment.
    """
    logger_to_use = current_logger if current_logger else module_logger
    if config_path is None:
        return {}
    if not config_path.is_file():
        logger_to_use.info(
            f"Configuration file '{config_path}' not found. Using defaults, environment variables, and CLI args."
        )
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger_to_use.warning(
            f"Could not parse YAML config file '{config_path}': {e}. Using defaults and environment variables."
        )
        return {}
    except IOError as e:
        logger_to_use.warning(
            f"Could not read config file '{config_path}': {e}. Using defaults and environment variables."
        )
        return {}

    if yaml_data is None:
        return {}
    if not isinstance(yaml_data, dict):
        logger_to_use.warning(
            f"Config file '{config_path}' does not contain a valid YAML dictionary. Ignoring."
        )
        return {}
    logger_to_use.info(f"Loaded configuration from {config_path}")
    return yaml_data


def build_settings(
    settings_cls: Type[SettingsT],
    yaml_values: Optional[Dict[str, Any]] = None,
    cli_values: Optional[Dict[str, Any]] = None,
    current_logger: Optional[logging.Logger] = None,
) -> SettingsT:
    """
    Builds a settings object with defaults < YAML < environment < CLI.

    Only values explicitly present in the environment take part in the
    merge, so a YAML value is not shadowed by a model default.

    Raises:
        SystemExit: The merged values fail validation.
    """
    logger_to_use = current_logger if current_logger else module_logger
    try:
        env_values = settings_cls().model_dump(exclude_unset=True)
        merged: Dict[str, Any] = {}
        _deep_update(merged, dict(yaml_values or {}))
        _deep_update(merged, env_values)
        _deep_update(merged, dict(cli_values or {}))
        return settings_cls(**merged)
    except ValidationError as e:
        logger_to_use.error(f"Configuration validation failed: {e}")
        raise SystemExit(f"Configuration error: {e}") from e


def load_app_settings(
    cli_args: Optional[argparse.Namespace] = None,
    config_file_path: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> AppSettings:
    """
    Loads the entrypoint-wide settings.

    Args:
        cli_args: Parsed command-line arguments. ``verbose``, ``log_prefix``
            and ``log_format`` are honoured.
        config_file_path: Path to the YAML configuration file.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        An instance of AppSettings with the fully resolved configuration.
    """
    logger_to_use = current_logger if current_logger else module_logger
    yaml_data = load_yaml_config(
        resolve_config_path(config_file_path), logger_to_use
    )
    yaml_app_values = {
        k: v for k, v in yaml_data.items() if k != "components"
    }

    mapped_cli_values: Dict[str, Any] = {}
    if cli_args:
        for cli_key, cli_value in vars(cli_args).items():
            if cli_value is None:
                continue
            if cli_key == "verbose" and cli_value:
                mapped_cli_values["log_level"] = "DEBUG"
            elif cli_key == "log_prefix":
                mapped_cli_values["log_prefix"] = cli_value
            elif cli_key == "log_format":
                mapped_cli_values["log_format"] = cli_value

    final_settings = build_settings(
        AppSettings, yaml_app_values, mapped_cli_values, logger_to_use
    )
    logger_to_use.debug(
        "Successfully loaded and validated application settings"
    )
    return final_settings


def load_component_settings(
    settings_cls: Type[SettingsT],
    component_name: str,
    config_file_path: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> SettingsT:
    """
    Loads the settings of one component.

    YAML values come from the ``components.<component_name>`` section of the
    configuration file.
    """
    logger_to_use = current_logger if current_logger else module_logger
    yaml_data = load_yaml_config(
        resolve_config_path(config_file_path), logger_to_use
    )
    section = (yaml_data.get("components") or {}).get(component_name) or {}
    if not isinstance(section, dict):
        logger_to_use.warning(
            f"Configuration section for '{component_name}' is not a dictionary. Ignoring."
        )
        section = {}
    return build_settings(settings_cls, section, None, logger_to_use)

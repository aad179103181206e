"""
Configuration for the driving loop.

Defaults are merged with an optional YAML file and then with environment
variables of the form ``JOBRUNNER_<SECTION>_<KEY>``.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from colored_logger import get_colored_logger, resolve_level

from .errors import ConfigurationError

logger = get_colored_logger(__name__)

ENV_PREFIX = "JOBRUNNER_"

CONFIG_FILE_NAMES = ("jobrunner.yml", ".jobrunner.yml")

DEFAULT_CONFIG: Dict[str, Any] = {
    "runner": {
        "tick_interval_seconds": 1,
        "max_ticks": None,
    },
    "logging": {
        "level": "INFO",
    },
}


def load_config(
    config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """
    Load runner configuration.

    Args:
        config_path: Explicit YAML file; when omitted, ``jobrunner.yml`` or
            ``.jobrunner.yml`` in the working directory is used if present
        environ: Environment mapping (default: ``os.environ``)

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid,
            or a value is out of range
    """
    if config_path:
        config_file: Optional[Path] = Path(config_path)
        if not config_file.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
    else:
        config_file = next(
            (Path(name) for name in CONFIG_FILE_NAMES if Path(name).is_file()), None
        )

    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_file is not None:
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load config from {config_file}: {e}"
            ) from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(
                f"Config file {config_file} must contain a mapping at the top level"
            )

        config = _deep_merge(config, user_config)
        logger.debug("Loaded configuration from %s", config_file)

    config = _apply_env_overrides(config, os.environ if environ is None else environ)
    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigurationError for values the runner can't use."""
    for name in DEFAULT_CONFIG:
        if not isinstance(config.get(name), dict):
            raise ConfigurationError(
                f"{name} must be a mapping, got {config.get(name)!r}"
            )

    runner = config["runner"]

    interval = runner.get("tick_interval_seconds")
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        raise ConfigurationError(
            f"runner.tick_interval_seconds must be a number, got {interval!r}"
        )
    if interval <= 0:
        raise ConfigurationError(
            f"runner.tick_interval_seconds must be positive, got {interval}"
        )

    max_ticks = runner.get("max_ticks")
    if max_ticks is not None:
        if isinstance(max_ticks, bool) or not isinstance(max_ticks, int):
            raise ConfigurationError(
                f"runner.max_ticks must be an integer, got {max_ticks!r}"
            )
        if max_ticks < 0:
            raise ConfigurationError(
                f"runner.max_ticks cannot be negative, got {max_ticks}"
            )

    level = config["logging"].get("level")
    try:
        resolve_level(level)
    except ValueError as e:
        raise ConfigurationError(f"logging.level: {e}") from e


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into nested dicts."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overrides(
    config: Dict[str, Any], environ: Dict[str, str]
) -> Dict[str, Any]:
    """
    Apply ``JOBRUNNER_<SECTION>_<KEY>`` overrides.

    The first segment after the prefix names the section and the rest is the
    key, so ``JOBRUNNER_RUNNER_TICK_INTERVAL_SECONDS=5`` sets
    ``runner.tick_interval_seconds``.
    """
    for env_key, env_value in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue

        section, sep, key = env_key[len(ENV_PREFIX) :].lower().partition("_")
        if not sep or not section or not key:
            continue

        target = config.setdefault(section, {})
        if not isinstance(target, dict):
            continue
        target[key] = _convert_env_value(env_value)
        logger.debug("Config override from %s", env_key)

    return config


def _convert_env_value(value: str) -> Any:
    """Convert an environment string to bool, None, int or float where it looks like one."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if lowered in ("", "none", "null"):
        return None

    try:
        return int(lowered)
    except ValueError:
        pass

    try:
        return float(lowered)
    except ValueError:
        pass

    return value

"""Configuration loading utilities for vibecheck."""

import copy
import os
from typing import Any, Optional
import logging

import yaml

LOG = logging.getLogger(__name__)

ConfigType = dict[str, Any]

_MISSING = object()


def _project_config_dir() -> str:
    """Return the config/ directory at the project root."""
    current_dir = os.path.dirname(os.path.abspath(__file__))
    # libs -> vibecheck -> project_root
    project_root = os.path.dirname(os.path.dirname(current_dir))
    return os.path.join(project_root, "config")


def merge_configs(orig_conf: Any, new_conf: Any) -> Any:
    """Recursively merge two configuration values, preferring new_conf."""
    if isinstance(orig_conf, dict) and isinstance(new_conf, dict):
        result = copy.deepcopy(orig_conf)
        for k, v in new_conf.items():
            if k in orig_conf:
                result[k] = merge_configs(orig_conf[k], v)
            else:
                result[k] = copy.deepcopy(v)
        return result
    return copy.deepcopy(new_conf)


def load_configs(*path_configs: str) -> ConfigType:
    """Load and merge YAML configuration files.

    Args:
        *path_configs: Paths to YAML configuration files, later files win

    Returns:
        Merged configuration dictionary

    Raises:
        TypeError: If a config file doesn't contain a dict
        ValueError: If no configs are loaded
    """
    result: ConfigType = {}
    for path in path_configs:
        LOG.info("loading config from %s", path)
        if os.path.isfile(path):
            with open(path, "r") as f:
                c = yaml.safe_load(f)
                if c is None:
                    continue
                if not isinstance(c, dict):
                    raise TypeError(f"YAML config file {path} must be a dict")
                result = merge_configs(result, c)
        else:
            LOG.warning("Skipping missing config file %s", repr(path))
    if not result:
        raise ValueError("No configs loaded")
    return result


def load_default_configs(config_dir: Optional[str] = None) -> ConfigType:
    """Load default.yaml and the uncommitted local.yaml overrides.

    Args:
        config_dir: Directory holding the YAML files (defaults to <project>/config)

    Returns:
        Merged configuration from default.yaml and local.yaml
    """
    config_dir = config_dir or _project_config_dir()
    return load_configs(
        os.path.join(config_dir, "default.yaml"),
        os.path.join(config_dir, "local.yaml"),
    )


def get_config(key: str, config: Optional[ConfigType] = None, default: Any = _MISSING) -> Any:
    """Get a configuration value by dot-separated key.

    Args:
        key: Dot-separated path to config value (e.g., "judge.candidate_timeout_seconds")
        config: Configuration dict (if None, loads default configs)
        default: Value returned when the key is absent; raises if not given

    Returns:
        Configuration value

    Raises:
        KeyError: If key not found in configuration and no default was given
    """
    if config is None:
        config = load_default_configs()

    keys = key.split('.')
    value: Any = config
    for i, k in enumerate(keys):
        if not isinstance(value, dict) or k not in value:
            if default is not _MISSING:
                return default
            if not isinstance(value, dict):
                raise KeyError(f"Cannot access {k} in non-dict value at {'.'.join(keys[:i])}")
            raise KeyError(f"Key {key} not found in configuration")
        value = value[k]
    return value

"""Centralized configuration loading for kubegate.

This module provides utilities for loading and accessing configuration from
kubegate.json with support for environment variable fallbacks and default values.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_CONFIG_PATH = "kubegate.json"
CONFIG_PATH_ENV = "KUBEGATE_CONFIG"
ENV_PREFIX = "KUBEGATE"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from JSON file.

    Returns empty dict if file doesn't exist or is invalid.

    Args:
        config_path: Path to the config file. Falls back to $KUBEGATE_CONFIG,
                     then "kubegate.json" in the working directory.

    Returns:
        Configuration dictionary, or empty dict if file not found/invalid
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)
    path = Path(config_path)

    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError):
        # Return empty dict on error, allowing code to use defaults
        return {}

    return data if isinstance(data, dict) else {}


def get_config_value(
    keys: List[str], default: Any = None, config: Optional[Dict[str, Any]] = None
) -> Any:
    """Get nested configuration value with fallback to environment variable.

    Supports key paths like ["pipeline", "profile"] or ["schema", "kubernetes_version"].
    Also checks environment variables as fallback
    (e.g., KUBEGATE_PIPELINE_PROFILE for pipeline.profile).

    Args:
        keys: List of keys to traverse (e.g., ["pipeline", "profile"])
        default: Default value if key not found
        config: Optional config dict (uses load_config() if not provided)

    Returns:
        Configuration value, or default if not found
    """
    if config is None:
        config = load_config()

    value: Any = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
            if value is None:
                break
        else:
            value = None
            break

    if value is not None:
        return value

    env_key = "_".join([ENV_PREFIX] + [k.upper() for k in keys])
    env_value = os.environ.get(env_key)
    if env_value is not None:
        return _coerce_env_value(env_value, default)

    return default


def _coerce_env_value(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the default."""
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return default
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw

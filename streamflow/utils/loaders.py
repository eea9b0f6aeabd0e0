import json
import tomllib
from typing import Any

import yaml

from .logging import get_logger

logger = get_logger(__name__)


def load_config_file(path: str) -> dict[str, Any]:
    """
    Load JSON, YAML or TOML configuration file.
    """
    if path.endswith(".json"):
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    elif path.endswith((".yaml", ".yml")):
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    elif path.endswith(".toml"):
        with open(path, "rb") as f:
            data = tomllib.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {path}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    logger.debug(f"Loaded config from {path}")
    return data


def deep_merge_dicts(dict1: dict, dict2: dict) -> dict:
    """
    Recursively merge two dictionaries.
    """
    result = dict1.copy()
    for key, value in dict2.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result

# PATH: config/__init__.py
"""
Configuration loading utilities for HEAVENBOT.
"""

from pathlib import Path
from typing import Any, Dict

import yaml


CONFIG_DIR = Path(__file__).parent


def load_yaml(filename: str) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Name of file in config directory

    Returns:
        Parsed YAML as dict
    """
    filepath = CONFIG_DIR / filename
    if not filepath.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


from config.settings import (  # noqa: E402
    EngineConfig,
    config_from_dict,
    load_engine_config,
    validate_config,
)

__all__ = [
    "CONFIG_DIR",
    "EngineConfig",
    "config_from_dict",
    "load_engine_config",
    "load_yaml",
    "validate_config",
]

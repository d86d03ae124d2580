from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv(override=True)

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = Path(__file__).resolve().parents[1] / "vectorstore" / "config.yaml"


def load_config(config_path: Path | str) -> Dict[str, Any]:
    """Load configuration from a given YAML file path.

    Args:
        config_path: Explicit path to the configuration file.

    Returns:
        Parsed configuration dictionary (empty if the file is empty).

    Raises:
        FileNotFoundError: If the configuration file is not found.
        ValueError: If the file is not valid YAML or not a mapping.
    """
    path = Path(config_path)

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise FileNotFoundError(f"Configuration file not found: {path}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML file '{path}': {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file '{path}' must contain a mapping")
    return data


@lru_cache(maxsize=1)
def get_config() -> Dict[str, Any]:
    """Project configuration; missing file means defaults everywhere."""
    try:
        return load_config(CONFIG_FILE_PATH)
    except FileNotFoundError:
        logger.info("No config file at %s; using defaults", CONFIG_FILE_PATH)
        return {}


def env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from e


def env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from e

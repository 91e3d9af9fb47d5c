"""Configuration file loader."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .settings import Settings

DEFAULT_CONFIG_PATH = Path("config/webchat.yaml")
DEFAULT_ENV_PATH = Path(".env")

# Environment variables that override single settings
ENV_OVERRIDES = {
    "WEBCHAT_ENDPOINT": ("service", "endpoint"),
    "WEBCHAT_PRESET": ("service", "preset"),
    "WEBCHAT_LOG_LEVEL": ("logging", "level"),
}

_ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} inside strings."""
    if isinstance(obj, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), obj)
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _apply_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    for var_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(var_name)
        if value:
            section_data = config_data.get(section)
            if not isinstance(section_data, dict):
                section_data = config_data[section] = {}
            section_data[key] = value
    return config_data


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> Settings:
    """Load configuration from YAML file and environment.

    A missing config file is not an error; defaults apply. Variables from
    the .env file never replace ones already set in the environment.

    Args:
        config_path: Path to the YAML config (default: config/webchat.yaml)
        env_path: Path to .env file (default: .env)

    Returns:
        Loaded Settings instance

    Raises:
        ValueError: If the file is not a YAML mapping
        pydantic.ValidationError: If a value has the wrong type
    """
    env_path = env_path or DEFAULT_ENV_PATH
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or DEFAULT_CONFIG_PATH
    config_data = _read_yaml(config_path) if config_path.exists() else {}

    config_data = _apply_env_overrides(_expand_env_vars(config_data))
    return Settings(**config_data)

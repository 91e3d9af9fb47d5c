"""Configuration management for the chat engine."""

from .loader import load_config
from .settings import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_STORAGE_KEY,
    MAX_POLL_FAILURES,
    LoggingSettings,
    ServiceSettings,
    Settings,
    StorageSettings,
    TextSettings,
    normalize_endpoint,
)

__all__ = [
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_STORAGE_KEY",
    "MAX_POLL_FAILURES",
    "LoggingSettings",
    "ServiceSettings",
    "Settings",
    "StorageSettings",
    "TextSettings",
    "load_config",
    "normalize_endpoint",
]

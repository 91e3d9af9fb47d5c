"""Durable key/value storage for the session id.

The desktop counterpart of a browser's localStorage. Implementations may
raise OSError; callers treat persistence as best effort.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from ..config.settings import StorageSettings

logger = logging.getLogger(__name__)


class SessionStorage(ABC):
    """Minimal string key/value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key if present."""


class MemoryStorage(SessionStorage):
    """Process-local storage, nothing survives a restart."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage(SessionStorage):
    """Stores keys in a single JSON object file.

    Writes go through a temporary file and an atomic replace so a crash never
    leaves a truncated file behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed storage file {self.path}")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


def create_storage(settings: StorageSettings) -> SessionStorage:
    """Create the storage backend selected in settings."""
    if settings.backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(Path(settings.path))

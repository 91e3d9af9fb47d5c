"""Remote chat service: session client, polling and session persistence."""

from .client import SessionClient
from .scheduler import PollScheduler
from .storage import JsonFileStorage, MemoryStorage, SessionStorage, create_storage

__all__ = [
    "JsonFileStorage",
    "MemoryStorage",
    "PollScheduler",
    "SessionClient",
    "SessionStorage",
    "create_storage",
]

"""Transcript synchronization engine for an embeddable chat widget.

Keeps a local, ordered transcript in sync with a remote conversation that is
fetched by polling, with optimistic sends and streamed agent output.
"""

from .config import Settings, load_config
from .engine import ChatEngine
from .errors import (
    ChatServiceError,
    InitializationFailedError,
    ProtocolDriftError,
    RetryableServiceError,
    SessionExpiredError,
    TransportError,
)
from .events import (
    MessageAdded,
    MessageChanged,
    MessageRemoved,
    PollingStopped,
    StateChanged,
    TranscriptCleared,
    TranscriptEvent,
)
from .models import Message, MessageRole, MessageStatus, SessionOffsets
from .service import SessionClient
from .transcript import MessageStore, TranscriptReconciler

__version__ = "0.1.0"

__all__ = [
    "ChatEngine",
    "ChatServiceError",
    "InitializationFailedError",
    "Message",
    "MessageAdded",
    "MessageChanged",
    "MessageRemoved",
    "MessageRole",
    "MessageStatus",
    "MessageStore",
    "PollingStopped",
    "ProtocolDriftError",
    "RetryableServiceError",
    "SessionClient",
    "SessionExpiredError",
    "SessionOffsets",
    "Settings",
    "StateChanged",
    "TranscriptCleared",
    "TranscriptEvent",
    "TranscriptReconciler",
    "TransportError",
    "load_config",
]

"""Event types for renderer updates."""

from dataclasses import dataclass
from typing import Optional

from .models import Message


@dataclass
class TranscriptEvent:
    """Base class for all transcript events."""
    pass


@dataclass
class MessageAdded(TranscriptEvent):
    """A message was appended to the store."""
    index: int
    message: Message


@dataclass
class MessageChanged(TranscriptEvent):
    """Content or flags of a stored message changed."""
    index: int
    message: Message


@dataclass
class MessageRemoved(TranscriptEvent):
    """A message was removed; later indices shifted down by one."""
    index: int
    message: Message


@dataclass
class TranscriptCleared(TranscriptEvent):
    """The store was emptied (full rebuild, reset or recovery)."""
    pass


@dataclass
class StateChanged(TranscriptEvent):
    """Engine flags used by the renderer changed.

    Attributes:
        awaiting_agent: The agent is working, sending is blocked
        pending_tool_index: Store index showing the tool indicator
        typing_index: Store index of the agent message being streamed
    """
    awaiting_agent: bool
    pending_tool_index: Optional[int] = None
    typing_index: Optional[int] = None


@dataclass
class PollingStopped(TranscriptEvent):
    """Polling was stopped after repeated failures."""
    failures: int
    notice: str = ""

"""Shared data models for the transcript engine.

These dataclasses are used by the store, the reconciler and the engine, and
are what a rendering layer reads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class MessageRole(Enum):
    """Role of the message sender."""
    USER = "user"
    AGENT = "agent"


class MessageStatus(Enum):
    """Delivery status of a user message."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class Message:
    """A single transcript entry.

    Attributes:
        role: Who wrote the message (user or agent)
        content: Message text, may be empty while streaming
        raw_content: Server text before entity decoding; stream offsets count
            characters of this, not of ``content``
        timestamp: Creation time, replaced by the server time once known
        status: Delivery status (user messages only)
        local_only: True until the server has echoed the message back
        is_tool_placeholder: Stands in for a tool call that has no text yet
        is_tool_call: The backend reported this entry as a tool call
        is_streaming_placeholder: Agent message that is still being appended to
        is_error: Local notice surfaced to the user, never sent to the server
    """

    role: MessageRole
    content: str = ""
    raw_content: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    status: Optional[MessageStatus] = None
    local_only: bool = False
    is_tool_placeholder: bool = False
    is_tool_call: bool = False
    is_streaming_placeholder: bool = False
    is_error: bool = False

    @property
    def is_user(self) -> bool:
        return self.role is MessageRole.USER

    @property
    def is_agent(self) -> bool:
        return self.role is MessageRole.AGENT


@dataclass(frozen=True)
class SessionOffsets:
    """Incremental fetch position inside a remote conversation.

    Attributes:
        history: Number of history entries fully consumed by the client
        text: Characters of the last consumed entry already applied
    """

    history: int = 0
    text: int = 0

    def __post_init__(self) -> None:
        if self.history < 0 or self.text < 0:
            raise ValueError(f"Offsets must be non-negative: {self.history}, {self.text}")

    def as_params(self) -> dict:
        """Query parameters for an incremental info request."""
        return {"offsetHistory": str(self.history), "offsetText": str(self.text)}

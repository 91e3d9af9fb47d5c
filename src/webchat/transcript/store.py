"""Ordered message store with index trackers.

A message's position in the store is its identity. Anything that refers to
a message by position (tool placeholder anchor, typing target, the
reconciler's history map) registers a tracker with the store, and the store
re-indexes every tracker when a message is removed.
"""

import copy
import logging
from typing import Any, Callable, Iterator, List, Optional, Tuple

from ..events import (
    MessageAdded,
    MessageChanged,
    MessageRemoved,
    TranscriptCleared,
    TranscriptEvent,
)
from ..models import Message, MessageRole, MessageStatus

logger = logging.getLogger(__name__)


class IndexTracker:
    """A position reference into a MessageStore that survives removals."""

    def __init__(self, index: Optional[int] = None) -> None:
        self.index = index

    def set(self, index: Optional[int]) -> None:
        self.index = index

    def clear(self) -> None:
        self.index = None

    def on_removed(self, removed: int) -> None:
        if self.index is None:
            return
        if self.index == removed:
            self.index = None
        elif self.index > removed:
            self.index -= 1

    def on_cleared(self) -> None:
        self.index = None

    def __repr__(self) -> str:
        return f"IndexTracker({self.index!r})"


class HistoryIndexMap:
    """Maps remote history positions to store indices.

    Position ``i`` of the remote history is displayed at ``store[map[i]]``.
    A removed message leaves a hole (None) at its history position.
    """

    def __init__(self) -> None:
        self._indices: List[Optional[int]] = []

    def get(self, position: int) -> Optional[int]:
        if 0 <= position < len(self._indices):
            return self._indices[position]
        return None

    def assign(self, position: int, index: int) -> None:
        if position < 0:
            return
        while len(self._indices) <= position:
            self._indices.append(None)
        self._indices[position] = index

    def __len__(self) -> int:
        return len(self._indices)

    def mapped_count(self) -> int:
        return sum(1 for index in self._indices if index is not None)

    def clear(self) -> None:
        self._indices.clear()

    def on_removed(self, removed: int) -> None:
        for position, index in enumerate(self._indices):
            if index is None:
                continue
            if index == removed:
                self._indices[position] = None
            elif index > removed:
                self._indices[position] = index - 1

    def on_cleared(self) -> None:
        self._indices.clear()


class MessageStore:
    """Ordered, indexable log of conversation messages.

    The store knows nothing about the network or the renderer. Renderers keep
    an opaque element handle per index (``set_element``) and subscribe to
    change events with ``add_listener``.

    No operation raises for an out-of-range index; it is a no-op.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._elements: List[Optional[Any]] = []
        self._trackers: List[Any] = []
        self._listeners: List[Callable[[TranscriptEvent], None]] = []

    # =========================================================================
    # Queries
    # =========================================================================

    def count(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def _valid(self, index: Optional[int]) -> bool:
        return index is not None and 0 <= index < len(self._messages)

    def get(self, index: Optional[int]) -> Optional[Message]:
        if not self._valid(index):
            return None
        return self._messages[index]

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def snapshot(self) -> Tuple[Message, ...]:
        """Return copies of all messages for read-only consumers."""
        return tuple(copy.copy(message) for message in self._messages)

    def find_local_user_message(self, content: str) -> Optional[int]:
        """Find a local-only user message with the same trimmed content.

        Used to reconcile an optimistic send with its server echo.
        """
        normalized = (content or "").strip()
        for index, message in enumerate(self._messages):
            if (
                message.role is MessageRole.USER
                and message.local_only
                and message.content.strip() == normalized
            ):
                return index
        return None

    def has_pending_local(self) -> bool:
        """Check for an optimistic user message not yet echoed by the server."""
        return any(
            message.role is MessageRole.USER
            and message.local_only
            and message.status is not MessageStatus.FAILED
            for message in self._messages
        )

    def last_index_where(self, predicate: Callable[[Message], bool]) -> Optional[int]:
        for index in range(len(self._messages) - 1, -1, -1):
            if predicate(self._messages[index]):
                return index
        return None

    # =========================================================================
    # Mutations
    # =========================================================================

    def add(self, message: Message) -> int:
        """Append a message and return its index."""
        self._messages.append(message)
        self._elements.append(None)
        index = len(self._messages) - 1
        self._emit(MessageAdded(index=index, message=message))
        return index

    def update(self, index: Optional[int], **changes: Any) -> bool:
        """Apply a partial update to the message at ``index``.

        Returns:
            True if the message existed and at least one field changed.
        """
        message = self.get(index)
        if message is None:
            return False
        changed = False
        for name, value in changes.items():
            if not hasattr(message, name):
                raise AttributeError(f"Message has no field {name!r}")
            if getattr(message, name) != value:
                setattr(message, name, value)
                changed = True
        if changed:
            self._emit(MessageChanged(index=index, message=message))
        return changed

    def touch(self, index: Optional[int]) -> None:
        """Re-emit a change event for a message without modifying it."""
        message = self.get(index)
        if message is not None:
            self._emit(MessageChanged(index=index, message=message))

    def remove(self, index: Optional[int]) -> Optional[Message]:
        """Remove a message and re-index every tracker.

        Trackers pointing past ``index`` move down by one, trackers pointing
        at ``index`` are invalidated.
        """
        if not self._valid(index):
            return None
        message = self._messages.pop(index)
        self._elements.pop(index)
        for tracker in self._trackers:
            tracker.on_removed(index)
        self._emit(MessageRemoved(index=index, message=message))
        return message

    def remove_where(self, predicate: Callable[[Message], bool]) -> int:
        """Remove every message matching ``predicate``. Returns the count."""
        removed = 0
        for index in range(len(self._messages) - 1, -1, -1):
            if predicate(self._messages[index]):
                self.remove(index)
                removed += 1
        return removed

    def clear(self) -> None:
        """Remove all messages and element handles; invalidate trackers."""
        self._messages = []
        self._elements = []
        for tracker in self._trackers:
            tracker.on_cleared()
        self._emit(TranscriptCleared())

    # =========================================================================
    # Trackers
    # =========================================================================

    def track(self, index: Optional[int] = None) -> IndexTracker:
        """Create and register an IndexTracker."""
        tracker = IndexTracker(index)
        self.register(tracker)
        return tracker

    def register(self, tracker: Any) -> None:
        """Register any object with ``on_removed``/``on_cleared`` hooks."""
        if tracker not in self._trackers:
            self._trackers.append(tracker)

    def untrack(self, tracker: Any) -> None:
        if tracker in self._trackers:
            self._trackers.remove(tracker)

    # =========================================================================
    # Renderer element handles
    # =========================================================================

    def set_element(self, index: int, element: Optional[Any]) -> None:
        if self._valid(index):
            self._elements[index] = element

    def element(self, index: int) -> Optional[Any]:
        if not self._valid(index):
            return None
        return self._elements[index]

    def has_element(self, index: int) -> bool:
        return self.element(index) is not None

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, callback: Callable[[TranscriptEvent], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[TranscriptEvent], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: TranscriptEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in transcript listener: {e}")

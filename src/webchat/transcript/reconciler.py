"""Transcript reconciliation.

Brings the MessageStore in line with an info response from the chat service,
either by rebuilding it from the full history or by merging an incremental
page that starts at the requested offsets.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..models import Message, MessageRole, MessageStatus, SessionOffsets
from ..protocol import HistoryEntry, InfoResponse
from .store import HistoryIndexMap, MessageStore
from .text import decode_html_entities, normalize_role, parse_timestamp

logger = logging.getLogger(__name__)


def merge_range(existing: str, chunk: str, offset: int) -> str:
    """Merge a streamed chunk into already stored text.

    Args:
        existing: Text currently stored for the entry
        chunk: Text returned by the server for the entry
        offset: Text offset the chunk starts at

    Returns:
        ``chunk`` when offset <= 0 (server resent the entry from scratch),
        ``existing + chunk`` when offset is at or past the end, otherwise
        ``existing[:offset] + chunk`` (the server overwrote a provisional tail).
    """
    if offset <= 0:
        return chunk
    if offset >= len(existing):
        return existing + chunk
    return existing[:offset] + chunk


def show_tool_placeholder(
    is_tool_call: bool,
    text: str,
    next_entry: Optional[HistoryEntry],
) -> bool:
    """Decide whether a history entry is shown as a "tool working" placeholder.

    Only a tool call without text qualifies, and only if it is the last entry
    or the next raw entry has no text either. Looks exactly one entry ahead.
    """
    if not is_tool_call or (text and text.strip()):
        return False
    return next_entry is None or not next_entry.has_text


@dataclass
class ReconcileResult:
    """Outcome of applying one info response.

    Attributes:
        offsets: Offsets to request next
        running: Whether the agent is still working
        rebuilt: True if the store was rebuilt from scratch
        entries: Number of history entries in the response
    """
    offsets: SessionOffsets
    running: bool
    rebuilt: bool
    entries: int


class TranscriptReconciler:
    """Applies fetched history to a MessageStore.

    Owns three position trackers registered with the store:
    - ``history_map``: remote history position -> store index
    - ``pending_tool``: index showing the tool placeholder (at most one)
    - ``typing_target``: agent message currently being streamed
    """

    def __init__(self, store: MessageStore):
        self.store = store
        self.history_map = HistoryIndexMap()
        self.store.register(self.history_map)
        self.pending_tool = store.track()
        self.typing_target = store.track()

    @property
    def pending_tool_index(self) -> Optional[int]:
        return self.pending_tool.index

    @property
    def typing_index(self) -> Optional[int]:
        return self.typing_target.index

    def should_rebuild(self, explicit: bool = False) -> bool:
        """Check whether the next fetch must be a full refresh.

        Local and remote indices cannot be assumed aligned while an
        optimistic send has not been echoed back.
        """
        return explicit or self.store.has_pending_local()

    def reset(self) -> None:
        """Forget all position state (the store is cleared separately)."""
        self.history_map.clear()
        self.pending_tool.clear()
        self.typing_target.clear()

    def apply(
        self,
        response: InfoResponse,
        *,
        full_refresh: bool,
        requested: Optional[SessionOffsets] = None,
        current: Optional[SessionOffsets] = None,
    ) -> ReconcileResult:
        """Apply an info response to the store.

        Args:
            response: Validated info response
            full_refresh: True if the response holds the complete history
            requested: Offsets the request was made with (incremental only)
            current: Offsets held before the request

        Returns:
            ReconcileResult with the offsets to use next
        """
        history = response.history
        if full_refresh:
            self._rebuild(history)
        else:
            self._merge(history, requested or current or SessionOffsets())

        if response.offsets is not None:
            offsets = response.offsets.to_offsets()
        elif full_refresh:
            offsets = SessionOffsets(history=len(history), text=0)
        elif current is not None:
            offsets = current
        else:
            offsets = SessionOffsets(history=len(self.history_map), text=0)

        if response.running:
            self._mark_streaming()
        else:
            self.finish()

        logger.debug(
            f"Applied {len(history)} history entries "
            f"({'rebuild' if full_refresh else 'merge'}), next offsets "
            f"{offsets.history}/{offsets.text}, running={response.running}"
        )
        return ReconcileResult(
            offsets=offsets,
            running=response.running,
            rebuilt=full_refresh,
            entries=len(history),
        )

    # =========================================================================
    # Full rebuild
    # =========================================================================

    def _rebuild(self, history: List[HistoryEntry]) -> None:
        # Consume optimistic messages the server has echoed back
        for entry in history:
            if normalize_role(entry.role) is not MessageRole.USER:
                continue
            index = self.store.find_local_user_message(decode_html_entities(entry.text))
            if index is not None:
                self.store.update(index, local_only=False, status=MessageStatus.SENT)

        unechoed = [message for message in self.store if message.is_user and message.local_only]

        self.store.clear()
        self.reset()

        previous: Optional[int] = None
        for position, entry in enumerate(history):
            next_entry = history[position + 1] if position + 1 < len(history) else None
            index = self.store.add(self._message_for(entry, next_entry))
            self.history_map.assign(position, index)
            self._update_tool_state(index, previous)
            previous = index

        for message in unechoed:
            self.store.add(message)

    # =========================================================================
    # Incremental merge
    # =========================================================================

    def _merge(self, page: List[HistoryEntry], start: SessionOffsets) -> None:
        for k, entry in enumerate(page):
            position = start.history + k
            text_offset = start.text if k == 0 else 0
            next_entry = page[k + 1] if k + 1 < len(page) else None

            index = self.history_map.get(position)
            existing = self.store.get(index)
            if existing is not None:
                # Offsets count raw characters, so splice before decoding
                raw = merge_range(existing.raw_content, entry.text or "", text_offset)
                merged = decode_html_entities(raw)
                is_tool_call = existing.is_tool_call or entry.is_tool_call
                changes = {
                    "content": merged,
                    "raw_content": raw,
                    "is_tool_call": is_tool_call,
                    "is_tool_placeholder": show_tool_placeholder(is_tool_call, merged, next_entry),
                }
                if entry.date_time:
                    changes["timestamp"] = parse_timestamp(entry.date_time)
                self.store.update(index, **changes)
            else:
                index = self._append_entry(entry, next_entry)
                self.history_map.assign(position, index)

            self._update_tool_state(index, self.history_map.get(position - 1))

    def _append_entry(self, entry: HistoryEntry, next_entry: Optional[HistoryEntry]) -> int:
        message = self._message_for(entry, next_entry)
        if message.is_user:
            index = self.store.find_local_user_message(message.content)
            if index is not None:
                self.store.update(
                    index,
                    raw_content=message.raw_content,
                    local_only=False,
                    status=MessageStatus.SENT,
                    timestamp=message.timestamp,
                )
                return index
        return self.store.add(message)

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _message_for(self, entry: HistoryEntry, next_entry: Optional[HistoryEntry]) -> Message:
        role = normalize_role(entry.role)
        raw = entry.text or ""
        text = decode_html_entities(raw)
        return Message(
            role=role,
            content=text,
            raw_content=raw,
            timestamp=parse_timestamp(entry.date_time),
            status=MessageStatus.SENT if role is MessageRole.USER else None,
            local_only=False,
            is_tool_call=entry.is_tool_call,
            is_tool_placeholder=show_tool_placeholder(entry.is_tool_call, text, next_entry),
        )

    def _update_tool_state(self, index: int, previous: Optional[int]) -> None:
        message = self.store.get(index)
        if message is None:
            return

        prior = self.store.get(previous)
        if prior is not None and prior.is_tool_placeholder and message.content.strip():
            # The tool call resolved into visible output
            self.store.update(previous, is_tool_placeholder=False)
            if self.pending_tool.index == previous:
                self.pending_tool.clear()

        if message.is_tool_placeholder:
            self.pending_tool.set(index)
        elif self.pending_tool.index == index:
            self.pending_tool.clear()

    def _last_transcript_index(self) -> Optional[int]:
        return self.store.last_index_where(lambda m: not m.is_error)

    def _mark_streaming(self) -> None:
        target = self._last_transcript_index()
        last = self.store.get(target)
        if last is None or not last.is_agent:
            target = None

        for index, message in enumerate(self.store):
            if message.is_streaming_placeholder and index != target:
                self.store.update(index, is_streaming_placeholder=False)

        if target is not None:
            self.store.update(target, is_streaming_placeholder=True)
        self.typing_target.set(target)

    def finish(self) -> None:
        """Clear tool and streaming state once the agent has stopped."""
        for index, message in enumerate(self.store):
            if message.is_tool_placeholder:
                self.store.update(index, is_tool_placeholder=False)
        self.pending_tool.clear()

        last_agent = self.store.last_index_where(lambda m: m.is_agent and not m.is_error)
        if last_agent is not None:
            if not self.store.update(last_agent, is_streaming_placeholder=False):
                # Final flush so renderers paint the completed text
                self.store.touch(last_agent)
        for index, message in enumerate(self.store):
            if message.is_streaming_placeholder:
                self.store.update(index, is_streaming_placeholder=False)
        self.typing_target.clear()

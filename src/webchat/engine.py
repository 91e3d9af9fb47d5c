"""Chat engine: optimistic sends, polling and session recovery.

Ties the SessionClient, PollScheduler, MessageStore and
TranscriptReconciler together and exposes the flags a renderer needs
(awaiting agent, tool placeholder anchor, typing target, send availability).
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from .config.settings import Settings
from .errors import ChatServiceError
from .events import PollingStopped, StateChanged, TranscriptEvent
from .models import Message, MessageRole, MessageStatus
from .service.client import SessionClient
from .service.scheduler import PollScheduler
from .service.storage import SessionStorage, create_storage
from .transcript.reconciler import ReconcileResult, TranscriptReconciler
from .transcript.store import MessageStore

logger = logging.getLogger(__name__)


class ChatEngine:
    """Keeps a local transcript in sync with one remote chat session.

    Usage:
        engine = ChatEngine(load_config())
        engine.add_listener(renderer.on_event)
        await engine.start()
        await engine.send("Hello")
        ...
        await engine.close()
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[SessionClient] = None,
        store: Optional[MessageStore] = None,
        storage: Optional[SessionStorage] = None,
    ):
        self.settings = settings
        self.texts = settings.texts
        self.store = store or MessageStore()
        if client is None:
            if storage is None:
                storage = create_storage(settings.storage)
            client = SessionClient(settings.service, storage)
        self.client = client
        self.reconciler = TranscriptReconciler(self.store)
        self.scheduler = PollScheduler(self._on_tick, interval_ms=settings.service.poll_interval_ms)
        self.max_poll_failures = settings.service.max_poll_failures

        self._awaiting_agent = False
        self._consent_granted = not settings.require_privacy_consent
        self._terminated = False
        self._force_full_refresh = False
        # Bumped whenever polling is stopped; a fetch started under an older
        # generation must not re-arm the scheduler or touch the flags
        self._stop_generation = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[TranscriptEvent], None]] = []

    # =========================================================================
    # Renderer-facing state
    # =========================================================================

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.store.snapshot()

    @property
    def awaiting_agent(self) -> bool:
        return self._awaiting_agent

    @property
    def pending_tool_index(self) -> Optional[int]:
        return self.reconciler.pending_tool_index

    @property
    def typing_index(self) -> Optional[int]:
        return self.reconciler.typing_index

    @property
    def tool_placeholder_text(self) -> str:
        return self.texts.tool_call_placeholder

    @property
    def has_session(self) -> bool:
        return self.client.session_id is not None

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def consent_granted(self) -> bool:
        return self._consent_granted

    @property
    def send_block_reason(self) -> Optional[str]:
        """Why sending is currently blocked: terminated, consent, streaming or None."""
        if self._terminated:
            return "terminated"
        if not self._consent_granted:
            return "consent"
        if self._awaiting_agent:
            return "streaming"
        return None

    @property
    def can_send(self) -> bool:
        return self.send_block_reason is None

    @property
    def send_tooltip(self) -> str:
        reason = self.send_block_reason
        if reason == "terminated":
            return self.texts.send_while_terminated_tooltip
        if reason == "consent":
            return self.texts.send_while_consent_pending_tooltip
        if reason == "streaming":
            return self.texts.send_while_streaming_tooltip
        return self.texts.send_button_label

    def add_listener(self, callback: Callable[[TranscriptEvent], None]) -> None:
        """Subscribe to message events and engine state events."""
        self.store.add_listener(callback)
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[TranscriptEvent], None]) -> None:
        self.store.remove_listener(callback)
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: TranscriptEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in engine listener: {e}")

    def _emit_state(self) -> None:
        self._emit(
            StateChanged(
                awaiting_agent=self._awaiting_agent,
                pending_tool_index=self.pending_tool_index,
                typing_index=self.typing_index,
            )
        )

    def _set_awaiting(self, awaiting: bool) -> None:
        if awaiting != self._awaiting_agent:
            self._awaiting_agent = awaiting
            self._emit_state()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> bool:
        """Resume a persisted session, if there is one.

        Returns:
            True if a session was restored and fetched.
        """
        if not self.client.is_configured:
            logger.warning("Chat service endpoint not configured")
            return False
        if not self.client.load_persisted_session():
            return False
        await self.poll(full_refresh=True)
        return self.has_session

    async def close(self) -> None:
        self._stop_polling(halt=True)
        await self.client.close()

    def grant_consent(self) -> None:
        self._consent_granted = True
        self._emit_state()

    def decline_consent(self) -> None:
        self._consent_granted = False
        self.terminate()

    def terminate(self) -> None:
        """Make the chat inactive until ``reset_conversation``."""
        self._terminated = True
        self._stop_polling(halt=True)
        self._set_awaiting(False)
        self._emit_state()

    def reset_conversation(self) -> None:
        """Start over: drop the transcript and the remote session."""
        self._stop_polling()
        self.client.clear_session()
        self.store.clear()
        self.reconciler.reset()
        self.scheduler.resume()
        self._force_full_refresh = False
        self._terminated = False
        self._consent_granted = not self.settings.require_privacy_consent
        self._awaiting_agent = False
        self._emit_state()

    async def recover_session(self) -> bool:
        """Replace an expired session with a fresh one.

        The old transcript is dropped; user messages that failed to send stay
        visible so they can be resent by hand.
        """
        logger.info("Recovering from expired chat session")
        self._stop_polling()
        self.client.clear_session()
        failed = [m for m in self.store if m.is_user and m.status is MessageStatus.FAILED]
        self.store.clear()
        self.reconciler.reset()
        for message in failed:
            self.store.add(message)
        self._force_full_refresh = False
        self.scheduler.resume()
        self._set_awaiting(False)
        return await self.client.init_session()

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, text: str) -> bool:
        """Send a user message with optimistic local insertion.

        Returns:
            True if the message reached the server.
        """
        content = (text or "").strip()
        if not content or not self.can_send:
            return False

        index = self.store.add(
            Message(
                role=MessageRole.USER,
                content=content,
                status=MessageStatus.PENDING,
                local_only=True,
            )
        )
        tracker = self.store.track(index)
        self._set_awaiting(True)
        try:
            if not self.client.session_id and not await self.client.init_session():
                logger.error("Could not start a chat session, message not sent")
                self.store.update(tracker.index, status=MessageStatus.FAILED)
                self._set_awaiting(False)
                return False

            try:
                await self.client.send_message(content)
            except ChatServiceError as e:
                logger.error(f"Failed to send message: {e}")
                self.store.update(tracker.index, status=MessageStatus.FAILED)
                self._set_awaiting(False)
                if e.is_session_expired:
                    await self.recover_session()
                return False

            self.store.update(tracker.index, status=MessageStatus.SENT, local_only=False)
            self._remove_stale_notices()
        finally:
            self.store.untrack(tracker)

        # The next fetch realigns local and remote indices
        self._force_full_refresh = True
        self.scheduler.resume()
        await self.poll()
        return True

    def _remove_stale_notices(self) -> None:
        removed = self.store.remove_where(
            lambda m: (m.is_user and m.status is MessageStatus.FAILED)
            or (m.is_error and m.local_only)
        )
        if removed:
            logger.debug(f"Removed {removed} failed messages and notices")

    # =========================================================================
    # Polling
    # =========================================================================

    def _on_tick(self):
        return self.poll()

    async def poll(self, full_refresh: bool = False) -> Optional[ReconcileResult]:
        """Fetch and apply one info response.

        Concurrent callers share one in-flight poll.
        """
        if self._poll_task is not None and not self._poll_task.done():
            return await asyncio.shield(self._poll_task)

        task = asyncio.ensure_future(self._poll(full_refresh))
        self._poll_task = task
        task.add_done_callback(self._clear_poll_task)
        return await asyncio.shield(task)

    def _clear_poll_task(self, task: asyncio.Task) -> None:
        if self._poll_task is task:
            self._poll_task = None

    def _stop_polling(self, halt: bool = False) -> None:
        self._stop_generation += 1
        if halt:
            self.scheduler.halt()
        else:
            self.scheduler.stop()

    async def _poll(self, full_refresh: bool) -> Optional[ReconcileResult]:
        session_id = self.client.session_id
        if not session_id or self._terminated:
            return None

        generation = self._stop_generation
        current = self.client.offsets
        full = self.reconciler.should_rebuild(full_refresh or self._force_full_refresh)
        full = full or current is None
        requested = None if full else current

        info = await self.client.fetch_info(full_refresh=full)

        if self._stop_generation != generation:
            logger.debug("Polling stopped during fetch, discarding response")
            return None

        if self.client.session_id != session_id:
            last_error = self.client.last_error
            if info is None and last_error is not None and last_error.is_session_expired:
                await self._handle_session_expired()
            else:
                logger.debug("Session changed during fetch, discarding response")
            return None

        if info is None:
            failures = self.client.poll_failure_count
            if failures >= self.max_poll_failures:
                self._stop_after_failures(failures)
            else:
                self.scheduler.schedule_next()
            return None

        result = self.reconciler.apply(info, full_refresh=full, requested=requested, current=current)
        self.client.offsets = result.offsets
        if full:
            self._force_full_refresh = False

        if result.running:
            self.scheduler.schedule_next()
        else:
            self.scheduler.stop()
        self._awaiting_agent = result.running
        self._emit_state()
        return result

    async def _handle_session_expired(self) -> None:
        self._awaiting_agent = False
        await self.recover_session()

    def _stop_after_failures(self, failures: int) -> None:
        logger.error(f"Polling stopped after {failures} consecutive failures")
        self.scheduler.halt()
        self.reconciler.finish()
        self._awaiting_agent = False
        self.store.add(
            Message(
                role=MessageRole.AGENT,
                content=self.texts.poll_failure_notice,
                local_only=True,
                is_error=True,
            )
        )
        self._emit(PollingStopped(failures=failures, notice=self.texts.poll_failure_notice))
        self._emit_state()

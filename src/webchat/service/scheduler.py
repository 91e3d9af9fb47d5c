"""Single-timer poll scheduler."""

import asyncio
import logging
from typing import Any, Callable, Optional, Set

from ..config.settings import DEFAULT_POLL_INTERVAL_MS

logger = logging.getLogger(__name__)


class PollScheduler:
    """Arms at most one pending poll timer at a time.

    The scheduler holds no business state. Whoever handles a tick decides
    whether to call ``schedule_next`` again. ``stop`` only cancels the
    pending timer; a request already in flight is left alone and its
    response simply is not followed by another tick.

    Usage:
        scheduler = PollScheduler(engine.poll, interval_ms=250)
        scheduler.schedule_next()
        # ... later
        scheduler.stop()
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize the scheduler.

        Args:
            callback: Called on each tick. May return a coroutine, which is
                run as a task on the loop.
            interval_ms: Default delay between ticks in milliseconds
            loop: Event loop to use (default: the running loop at schedule time)
        """
        self._callback = callback
        self.interval_ms = interval_ms
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._halted = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    @property
    def is_halted(self) -> bool:
        return self._halted

    def schedule_next(self, delay_ms: Optional[int] = None) -> bool:
        """Cancel any pending timer and arm a new one.

        Args:
            delay_ms: Override for the configured interval

        Returns:
            False if the scheduler is halted and nothing was armed.
        """
        if self._halted:
            logger.debug("Poll scheduler halted, not scheduling")
            return False
        self.stop()
        interval = self.interval_ms if delay_ms is None else delay_ms
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(max(0, interval) / 1000.0, self._fire)
        return True

    def stop(self) -> None:
        """Cancel the pending timer, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def halt(self) -> None:
        """Stop and refuse to schedule until ``resume`` is called."""
        self.stop()
        self._halted = True

    def resume(self) -> None:
        self._halted = False

    def _fire(self) -> None:
        self._handle = None
        try:
            result = self._callback()
        except Exception as e:
            logger.error(f"Error in poll callback: {e}")
            return
        if asyncio.iscoroutine(result):
            loop = self._loop or asyncio.get_running_loop()
            task = loop.create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Poll tick failed: {exc}")

"""Deadline-ordered delayed task queue.

Tasks are keyed on absolute wall-clock deadlines in milliseconds since the
epoch, matching the timestamps carried by ``audio-sync`` messages. A single
event-loop timer is armed for the earliest pending deadline; when it fires,
every due task runs in (deadline, insertion order) order.

Not thread-safe: schedule and cancel from the event loop thread only.
"""

import asyncio
import heapq
import itertools
import logging
import math
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def wall_clock_ms() -> float:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time() * 1000.0


class ScheduledTask:
    """Handle for a task registered with a DelayedTaskQueue."""

    __slots__ = ("deadline_ms", "seq", "callback", "cancelled", "fired")

    def __init__(self, deadline_ms: float, seq: int, callback: Callable[[], None]):
        self.deadline_ms = deadline_ms
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> bool:
        """Cancel the task.

        Returns:
            True if the task was pending, False if it already ran or was
            cancelled
        """
        if self.cancelled or self.fired:
            return False
        self.cancelled = True
        return True

    def __lt__(self, other: "ScheduledTask") -> bool:
        return (self.deadline_ms, self.seq) < (other.deadline_ms, other.seq)

    def __repr__(self) -> str:
        """String representation for debugging."""
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"ScheduledTask(deadline_ms={self.deadline_ms:.1f}, seq={self.seq}, {state})"


class DelayedTaskQueue:
    """Per-device queue of callbacks due at absolute deadlines."""

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        now_ms: Optional[Callable[[], float]] = None,
    ):
        """Initialize queue.

        Args:
            loop: Event loop to arm timers on (default: running loop at first
                schedule)
            now_ms: Wall clock in ms since epoch (injectable for tests)
        """
        self._loop = loop
        self._now_ms = now_ms or wall_clock_ms
        self._heap: list[ScheduledTask] = []
        self._counter = itertools.count()
        self._timer: Optional[asyncio.TimerHandle] = None
        self.tasks_fired = 0

    @property
    def pending(self) -> int:
        """Number of tasks that have neither fired nor been cancelled."""
        return sum(1 for t in self._heap if not t.cancelled)

    def schedule(self, deadline_ms: float, callback: Callable[[], None]) -> ScheduledTask:
        """Run ``callback`` once the wall clock reaches ``deadline_ms``.

        A deadline already in the past runs on the next loop iteration.

        Args:
            deadline_ms: Absolute deadline (ms since epoch)
            callback: Zero-argument callable

        Returns:
            Cancellable task handle

        Raises:
            ValueError: If ``deadline_ms`` is NaN or infinite
        """
        if not math.isfinite(deadline_ms):
            raise ValueError(f"Deadline must be finite, got {deadline_ms}")

        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        task = ScheduledTask(deadline_ms, next(self._counter), callback)
        heapq.heappush(self._heap, task)

        # Re-arm only when the new task became the earliest
        if self._heap[0] is task:
            self._arm()
        return task

    def cancel_all(self) -> int:
        """Cancel every pending task.

        Returns:
            Number of tasks cancelled
        """
        cancelled = sum(1 for t in self._heap if t.cancel())
        self._heap.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if cancelled:
            logger.debug(f"Cancelled {cancelled} scheduled tasks")
        return cancelled

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        # Drop cancelled tasks at the head
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
        if not self._heap:
            return

        delay_sec = max(0.0, self._heap[0].deadline_ms - self._now_ms()) / 1000.0
        self._timer = self._loop.call_later(delay_sec, self._fire)

    def _fire(self) -> None:
        self._timer = None
        now = self._now_ms()

        while self._heap and self._heap[0].deadline_ms <= now:
            task = heapq.heappop(self._heap)
            if task.cancelled:
                continue
            task.fired = True
            self.tasks_fired += 1
            try:
                task.callback()
            except Exception as e:
                logger.error(f"Scheduled task failed: {e}", exc_info=True)

        self._arm()

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"DelayedTaskQueue(pending={self.pending})"

"""Timed wakeups for batch flushes, retries and periodic ticks.

A single heap of due callbacks, ordered by due time then insertion order,
replaces ad hoc per-group and per-retry timers. Cancelling a handle only
flags it; cancelled entries are discarded when they reach the top.

``ThreadedScheduler`` runs callbacks on one background thread and keeps due
times on the monotonic clock; ``now()`` stays epoch time.
``ManualScheduler`` exposes the same interface with a virtual clock that
tests move forward explicitly.
"""

import heapq
import itertools
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

from notifier.logging import get_module_logger

logger = get_module_logger()


class TimerHandle:
    """Handle for a scheduled callback."""

    __slots__ = ("due", "seq", "callback", "args", "cancelled")

    def __init__(
        self, due: float, seq: int, callback: Callable[..., Any], args: Tuple[Any, ...]
    ):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class RepeatingHandle:
    """Handle for a callback re-armed after every run until cancelled."""

    def __init__(
        self, scheduler: "Scheduler", interval_s: float, callback: Callable[[], Any]
    ):
        self._scheduler = scheduler
        self._interval_s = interval_s
        self._callback = callback
        self._lock = threading.Lock()
        self._current: Optional[TimerHandle] = None
        self.cancelled = False

    def _arm(self) -> None:
        with self._lock:
            if self.cancelled:
                return
            self._current = self._scheduler.call_later(self._interval_s, self._run)

    def _run(self) -> None:
        try:
            self._callback()
        finally:
            self._arm()

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True
            if self._current is not None:
                self._current.cancel()


class Scheduler(ABC):
    """Interface shared by the threaded and manual schedulers."""

    def __init__(self) -> None:
        self._heap: List[TimerHandle] = []
        self._counter = itertools.count()

    @abstractmethod
    def now(self) -> float:
        """Current time in epoch seconds."""

    def _deadline_clock(self) -> float:
        """Time base for due times. Only differences between readings matter."""
        return self.now()

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    def call_later(
        self, delay_s: float, callback: Callable[..., Any], *args: Any
    ) -> TimerHandle:
        """Schedule ``callback(*args)`` to run after ``delay_s`` seconds."""
        handle = TimerHandle(
            self._deadline_clock() + max(0.0, delay_s),
            next(self._counter),
            callback,
            args,
        )
        self._push(handle)
        return handle

    def call_every(self, interval_s: float, callback: Callable[[], Any]) -> RepeatingHandle:
        """Schedule ``callback`` every ``interval_s`` seconds."""
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        repeating = RepeatingHandle(self, interval_s, callback)
        repeating._arm()
        return repeating

    @abstractmethod
    def _push(self, handle: TimerHandle) -> None:
        """Insert a handle into the heap."""

    def pending_count(self) -> int:
        return sum(1 for handle in self._heap if not handle.cancelled)

    def start(self) -> None:
        """Start dispatching callbacks."""

    def stop(self) -> None:
        """Stop dispatching callbacks. Pending callbacks are dropped."""

    def _run_handle(self, handle: TimerHandle) -> None:
        try:
            handle.callback(*handle.args)
        except Exception as e:  # pylint: disable=broad-except
            logger.exception(
                "scheduled_callback_failed",
                callback=getattr(handle.callback, "__qualname__", repr(handle.callback)),
                error=str(e),
            )


class ThreadedScheduler(Scheduler):
    """Scheduler that runs callbacks on a dedicated daemon thread.

    Callbacks must be short; long work belongs on an executor.
    """

    def __init__(self, name: str = "notification-scheduler"):
        super().__init__()
        self._name = name
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def now(self) -> float:
        return time.time()

    def _deadline_clock(self) -> float:
        # Wall-clock steps must not move timers
        return time.monotonic()

    def _push(self, handle: TimerHandle) -> None:
        with self._condition:
            heapq.heappush(self._heap, handle)
            self._condition.notify()

    def start(self) -> None:
        with self._condition:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.info("scheduler_started", name=self._name)

    def stop(self, timeout: float = 5.0) -> None:
        with self._condition:
            if not self._running:
                return
            self._running = False
            self._condition.notify_all()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        with self._condition:
            dropped = sum(1 for handle in self._heap if not handle.cancelled)
            self._heap.clear()
        logger.info("scheduler_stopped", name=self._name, dropped_callbacks=dropped)

    def _loop(self) -> None:
        while True:
            with self._condition:
                while self._running:
                    while self._heap and self._heap[0].cancelled:
                        heapq.heappop(self._heap)
                    if not self._heap:
                        self._condition.wait()
                        continue
                    wait_s = self._heap[0].due - self._deadline_clock()
                    if wait_s <= 0:
                        break
                    self._condition.wait(wait_s)
                if not self._running:
                    return
                handle = heapq.heappop(self._heap)
            self._run_handle(handle)


class ManualScheduler(Scheduler):
    """Scheduler driven by a virtual clock.

    Nothing runs until ``advance`` or ``run_pending`` is called. Callbacks
    run on the calling thread, in due order, with ``now()`` set to their
    due time.

    Example:
        scheduler = ManualScheduler(start=1_700_000_000.0)
        scheduler.call_later(10, flush)
        scheduler.advance(10)  # flush runs here
    """

    def __init__(self, start: float = 1_700_000_000.0):
        super().__init__()
        self._now = start
        self._lock = threading.RLock()

    def now(self) -> float:
        return self._now

    def _push(self, handle: TimerHandle) -> None:
        with self._lock:
            heapq.heappush(self._heap, handle)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due.

        Returns:
            Number of callbacks run.
        """
        if seconds < 0:
            raise ValueError("cannot move the clock backwards")
        target = self._now + seconds
        ran = 0
        while True:
            with self._lock:
                while self._heap and self._heap[0].cancelled:
                    heapq.heappop(self._heap)
                if not self._heap or self._heap[0].due > target:
                    break
                handle = heapq.heappop(self._heap)
                self._now = max(self._now, handle.due)
            self._run_handle(handle)
            ran += 1
        self._now = target
        return ran

    def advance_ms(self, milliseconds: float) -> int:
        return self.advance(milliseconds / 1000)

    def run_pending(self) -> int:
        """Run callbacks already due without moving the clock."""
        return self.advance(0)

    def stop(self) -> None:
        with self._lock:
            self._heap.clear()

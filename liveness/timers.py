"""
Cancellable one-shot timers.

Every periodic or delayed action in a session (face sampling ticks, speech
retry backoff) goes through a Scheduler so that stop() can cancel it by
handle. Two schedulers are provided:

- ThreadScheduler: real time, one threading.Timer per scheduled call
- ManualScheduler: virtual clock advanced explicitly; callbacks run on the
  thread that calls advance(). Used by tests and offline video replay.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Ticket returned by Scheduler.call_later; cancel() is idempotent."""

    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self._lock = threading.Lock()
        self._cancelled = False
        self._fired = False
        self._on_done: Optional[Callable[[TimerHandle], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled or self._fired:
                return
            self._cancelled = True
        if self._on_done is not None:
            self._on_done(self)

    def _claim(self) -> bool:
        """Mark as fired; False if it was cancelled first."""
        with self._lock:
            if self._cancelled or self._fired:
                return False
            self._fired = True
        if self._on_done is not None:
            self._on_done(self)
        return True

    def _run(self) -> None:
        if not self._claim():
            return
        try:
            self.callback()
        except Exception:
            logger.exception("[timers] scheduled callback failed")


class Scheduler:
    """Interface for scheduling cancellable delayed callbacks."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def pending_count(self) -> int:
        raise NotImplementedError


class ThreadScheduler(Scheduler):
    """Wall-clock scheduler backed by threading.Timer."""

    def __init__(self):
        self._lock = threading.Lock()
        self._live: dict[TimerHandle, threading.Timer] = {}

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.now() + max(0.0, delay), callback)
        timer = threading.Timer(max(0.0, delay), handle._run)
        timer.daemon = True
        handle._on_done = self._forget
        with self._lock:
            self._live[handle] = timer
        timer.start()
        return handle

    def _forget(self, handle: TimerHandle) -> None:
        with self._lock:
            timer = self._live.pop(handle, None)
        if timer is not None and handle.cancelled:
            timer.cancel()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._live)


class ManualScheduler(Scheduler):
    """Virtual-clock scheduler; nothing fires until advance() is called."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, TimerHandle]] = []
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), callback)
        with self._lock:
            heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        return handle

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for _, _, h in self._queue if h.pending)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that comes due. Returns how many ran."""
        target = self._now + max(0.0, seconds)
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    break
                due, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if handle.pending:
                handle._run()
                ran += 1
        self._now = target
        return ran

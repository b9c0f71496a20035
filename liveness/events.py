"""
Fan-out of session events to subscribers.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List

from liveness.models import SessionEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[SessionEvent], None]


class EventBus:
    """Synchronous publish/subscribe; publish() delivers on the caller's thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(event)
            except Exception:
                logger.exception(f"[events] subscriber failed on {event.type}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

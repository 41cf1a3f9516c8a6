from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger("orderwatch.observers")

Observer = Callable[[Any], None]


class ObserverRegistry:
    """Ordered observer list with failure-isolated synchronous delivery.

    Observers are callables taking the subject (the coordinator). Delivery
    iterates over a snapshot, so observers may register or remove others
    while being notified.
    """

    def __init__(self, subject: Any) -> None:
        self._subject = subject
        self._observers: List[Observer] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def register(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)
        self._deliver(observer)

    def remove(self, observer: Observer) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

    def notify_all(self) -> None:
        with self._lock:
            snapshot = list(self._observers)
        for observer in snapshot:
            self._deliver(observer)

    def _deliver(self, observer: Observer) -> None:
        try:
            observer(self._subject)
        except Exception:  # noqa: BLE001
            logger.exception("Observer %r failed", observer)

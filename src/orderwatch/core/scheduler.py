"""Recurring per-task poll scheduling on daemon threads."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger("orderwatch.scheduler")


@dataclass
class PollHandle:
    """A running recurring callback for one task."""
    task_id: int
    initial_delay: float
    interval: float
    callback: Callable[[], None]
    runs: int = 0
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name=f"poll-task-{self.task_id}",
        )
        self._thread.start()

    def cancel(self) -> None:
        # An invocation already in flight runs to completion.
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self) -> None:
        if self._stop_event.wait(self.initial_delay):
            return
        while not self._stop_event.is_set():
            self.runs += 1
            try:
                self.callback()
            except Exception:  # noqa: BLE001
                logger.exception("Poll callback for task %s failed", self.task_id)
            if self._stop_event.wait(self.interval):
                return


class PollScheduler:
    """Holds at most one :class:`PollHandle` per task id."""

    def __init__(self) -> None:
        self._handles: Dict[int, PollHandle] = {}
        self._started_at: Dict[int, datetime] = {}
        self._lock = threading.Lock()

    def schedule(
        self,
        task_id: int,
        initial_delay: float,
        interval: float,
        callback: Callable[[], None],
    ) -> PollHandle:
        """Start a recurring callback, replacing any handle held for *task_id*."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        handle = PollHandle(
            task_id=task_id,
            initial_delay=initial_delay,
            interval=interval,
            callback=callback,
        )
        with self._lock:
            previous = self._handles.get(task_id)
            if previous is not None:
                previous.cancel()
                logger.info("Replaced poll schedule for task %s", task_id)
            self._handles[task_id] = handle
            handle.start()
        logger.info(
            "Poll scheduled for task %s: first run in %ss, then every %ss",
            task_id, initial_delay, interval,
        )
        return handle

    def cancel(self, handle: PollHandle) -> None:
        """Cancel *handle* and release it if it is still the current one for its task."""
        handle.cancel()
        with self._lock:
            if self._handles.get(handle.task_id) is handle:
                del self._handles[handle.task_id]
        logger.info("Poll cancelled for task %s", handle.task_id)

    def get_handle(self, task_id: int) -> Optional[PollHandle]:
        with self._lock:
            return self._handles.get(task_id)

    def record_start_time(self, task_id: int) -> datetime:
        started = datetime.now(timezone.utc)
        with self._lock:
            self._started_at[task_id] = started
        return started

    def clear_start_time(self, task_id: int) -> None:
        with self._lock:
            self._started_at.pop(task_id, None)

    def start_time(self, task_id: int) -> Optional[datetime]:
        with self._lock:
            return self._started_at.get(task_id)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for h in self._handles.values() if not h.cancelled)

    def cancel_all(self) -> int:
        """Cancel every handle and clear all start times. Returns the number cancelled."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
            self._started_at.clear()
        for handle in handles:
            handle.cancel()
        return len(handles)

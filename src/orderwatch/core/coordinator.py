"""Task coordinator: selection, poll lifecycle and order ingestion.

The coordinator is shared between the control thread (select/start/stop)
and the poll threads of running tasks (``add_order`` / ``mark_exception``).
Selection and the order set live behind one lock; observers are notified
after the lock is released so they may call back into the coordinator.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from orderwatch.core.logging_config import log_task_event
from orderwatch.core.models import Order, Task, TaskStatus
from orderwatch.core.observers import Observer, ObserverRegistry
from orderwatch.core.registry import TaskRegistry
from orderwatch.core.scheduler import PollScheduler

logger = logging.getLogger("orderwatch.coordinator")

INITIAL_DELAY_SECONDS = 2.0
MIN_POLL_INTERVAL_SECONDS = 30.0

JobFactory = Callable[["TaskCoordinator", Task], Callable[[], None]]


class Outcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"


class TaskCoordinator:
    def __init__(
        self,
        registry: TaskRegistry,
        scheduler: PollScheduler,
        job_factory: JobFactory,
        poll_interval: Callable[[], float] = lambda: MIN_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._job_factory = job_factory
        self._poll_interval = poll_interval
        self._observers = ObserverRegistry(self)
        self._orders: Dict[Tuple[int, str], Order] = {}
        self._lock = threading.RLock()

        tasks = registry.list_tasks()
        self._current: Optional[Task] = tasks[0] if tasks else None

    # ── Observers ────────────────────────────────────────────

    def register(self, observer: Observer) -> None:
        """Add an observer and immediately notify it once."""
        self._observers.register(observer)

    def remove(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def notify_all(self) -> None:
        self._observers.notify_all()

    # ── Selection and queries ────────────────────────────────

    @property
    def current_task(self) -> Optional[Task]:
        """Last selected task as known here; its status may be stale."""
        with self._lock:
            return self._current

    def get_tasks(self) -> List[Task]:
        return self._registry.list_tasks()

    def get_orders(self) -> List[Order]:
        """Orders belonging to the selected task, in no particular order."""
        with self._lock:
            if self._current is None:
                return []
            task_id = self._current.task_id
            return [o for o in self._orders.values() if o.task_id == task_id]

    def started_at(self, task_id: int) -> Optional[datetime]:
        return self._scheduler.start_time(task_id)

    def select_task(self, name: str) -> Outcome:
        task = self._registry.find_by_name(name)
        if task is None:
            logger.debug("select_task: no task named %r", name)
            return Outcome.NOT_FOUND
        with self._lock:
            if self._current is not None and self._current.task_id == task.task_id:
                return Outcome.UNCHANGED
            self._current = task
        logger.info("Selected task %s (%s)", task.task_id, task.name)
        self.notify_all()
        return Outcome.APPLIED

    # ── Lifecycle ────────────────────────────────────────────

    def start_task(self) -> Outcome:
        """Start polling the selected task with a fresh order set."""
        with self._lock:
            if self._current is None:
                return Outcome.NOT_FOUND
            task = self._registry.get(self._current.task_id)
            if task is None:
                logger.debug("start_task: task %s no longer exists", self._current.task_id)
                return Outcome.NOT_FOUND
            self._current = task

        # A poll left running by mark_exception must be gone before the purge.
        self._release_schedule(task.task_id)
        with self._lock:
            purged = self._purge_orders(task.task_id)

        self._set_status(task.task_id, TaskStatus.RUNNING)
        self.notify_all()

        interval = max(float(self._poll_interval()), MIN_POLL_INTERVAL_SECONDS)
        self._scheduler.schedule(
            task.task_id,
            INITIAL_DELAY_SECONDS,
            interval,
            self._job_factory(self, task),
        )
        self._scheduler.record_start_time(task.task_id)
        logger.info("Task %s started (interval=%ss, purged %d orders)", task.task_id, interval, purged)
        log_task_event(task.task_id, "started", interval=interval, purged=purged)
        return Outcome.APPLIED

    def stop_task(self) -> Outcome:
        """Stop polling the selected task."""
        with self._lock:
            task = self._current
        if task is None:
            return Outcome.NOT_FOUND

        self._set_status(task.task_id, TaskStatus.STOPPED)
        self.notify_all()
        self._release_schedule(task.task_id)
        logger.info("Task %s stopped", task.task_id)
        log_task_event(task.task_id, "stopped")
        return Outcome.APPLIED

    def switch_status(self) -> Outcome:
        """Start the selected task if it is stopped, otherwise stop it."""
        with self._lock:
            if self._current is None:
                return Outcome.NOT_FOUND
            task_id = self._current.task_id
        task = self._registry.get(task_id)
        if task is None:
            return Outcome.NOT_FOUND
        if task.status == TaskStatus.STOPPED:
            return self.start_task()
        return self.stop_task()

    def mark_exception(self, task_id: int) -> None:
        """Flag a task as failed. Observers are not notified and polling continues."""
        self._set_status(task_id, TaskStatus.INERROR)
        logger.warning("Task %s marked in error", task_id)
        log_task_event(task_id, "error")

    def stop_all_tasks(self) -> int:
        """Stop every task that is not already stopped. Used at shutdown."""
        stopped = 0
        for task in self._registry.list_tasks():
            if task.status == TaskStatus.STOPPED:
                continue
            self._set_status(task.task_id, TaskStatus.STOPPED)
            self._release_schedule(task.task_id)
            log_task_event(task.task_id, "stopped", reason="shutdown")
            stopped += 1
        if stopped:
            logger.info("Stopped %d task(s) on shutdown", stopped)
        return stopped

    def remove_task(self, task_id: int) -> Outcome:
        """Delete a task, cancelling its poll and dropping its orders.

        Removing the selected task selects the first remaining one and
        notifies observers.
        """
        self._release_schedule(task_id)
        if not self._registry.remove_task(task_id):
            return Outcome.NOT_FOUND
        with self._lock:
            purged = self._purge_orders(task_id)
            reselect = self._current is not None and self._current.task_id == task_id
            if reselect:
                remaining = self._registry.list_tasks()
                self._current = remaining[0] if remaining else None
        logger.info("Task %s removed (dropped %d orders)", task_id, purged)
        log_task_event(task_id, "removed", purged=purged)
        if reselect:
            self.notify_all()
        return Outcome.APPLIED

    # ── Ingestion ────────────────────────────────────────────

    def add_order(self, order: Order) -> None:
        """Insert *order*, replacing any earlier order with the same key."""
        with self._lock:
            self._orders.pop(order.key, None)
            self._orders[order.key] = order
            visible = self._current is not None and self._current.task_id == order.task_id
        if visible:
            self.notify_all()

    # ── Internals ────────────────────────────────────────────

    def _purge_orders(self, task_id: int) -> int:
        stale = [key for key in self._orders if key[0] == task_id]
        for key in stale:
            del self._orders[key]
        return len(stale)

    def _set_status(self, task_id: int, status: TaskStatus) -> None:
        updated = self._registry.set_status(task_id, status)
        if updated is None:
            return
        with self._lock:
            if self._current is not None and self._current.task_id == task_id:
                self._current = updated

    def _release_schedule(self, task_id: int) -> None:
        handle = self._scheduler.get_handle(task_id)
        if handle is not None:
            self._scheduler.cancel(handle)
        self._scheduler.clear_start_time(task_id)

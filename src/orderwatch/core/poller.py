"""Poll jobs and the fetchers they run.

A fetcher is any callable ``fetcher(task) -> Iterable[Order]``. The
scheduler runs one :class:`PollJob` per running task; the job feeds fetched
orders into the coordinator and marks the task in error when the fetcher
raises.
"""
from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, List

import httpx

from orderwatch.core.logging_config import log_task_event
from orderwatch.core.models import Order, Task

if TYPE_CHECKING:
    from orderwatch.core.coordinator import TaskCoordinator

logger = logging.getLogger("orderwatch.poller")

Fetcher = Callable[[Task], Iterable[Order]]


class FetchError(RuntimeError):
    """Raised by a fetcher when the source could not be read."""


class PollJob:
    def __init__(self, coordinator: "TaskCoordinator", fetcher: Fetcher, task: Task) -> None:
        self.coordinator = coordinator
        self.fetcher = fetcher
        self.task = task

    def __call__(self) -> None:
        task_id = self.task.task_id
        try:
            orders = list(self.fetcher(self.task))
        except Exception as exc:  # noqa: BLE001
            logger.error("Fetch failed for task %s: %s", task_id, exc)
            self.coordinator.mark_exception(task_id)
            return
        for order in orders:
            self.coordinator.add_order(order)
        logger.debug("Task %s: ingested %d orders", task_id, len(orders))
        log_task_event(task_id, "fetched", orders=len(orders))


def make_job_factory(fetcher: Fetcher) -> Callable[["TaskCoordinator", Task], PollJob]:
    def _factory(coordinator: "TaskCoordinator", task: Task) -> PollJob:
        return PollJob(coordinator, fetcher, task)
    return _factory


def null_fetcher(task: Task) -> List[Order]:
    """Fetcher used when none is configured: never yields orders."""
    return []


class HttpOrderFetcher:
    """Read orders as JSON from ``task.source_url``.

    The response may be a list of order objects or ``{"orders": [...]}``.
    Every order is stamped with the polling task's id.
    """

    def __init__(self, timeout: float = 20.0, transport: httpx.BaseTransport | None = None) -> None:
        self.timeout = timeout
        self._transport = transport

    def __call__(self, task: Task) -> List[Order]:
        if not task.source_url:
            raise FetchError(f"Task {task.task_id} has no source_url")
        headers = {"Cookie": task.cookie} if task.cookie else {}
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            resp = client.get(task.source_url, headers=headers)
        if resp.status_code != 200:
            raise FetchError(f"GET {task.source_url} failed: {resp.status_code} {resp.text[:300]}")
        return self._parse(task, resp.json())

    @staticmethod
    def _parse(task: Task, data: Any) -> List[Order]:
        items = data.get("orders", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise FetchError("Unexpected payload: expected a list of orders")
        orders: List[Order] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("trade_no"):
                logger.warning("Task %s: skipping malformed order %r", task.task_id, item)
                continue
            orders.append(Order.from_dict({**item, "task_id": task.task_id}))
        return orders


def load_fetcher(ref: str) -> Fetcher:
    """Resolve a ``module:attr`` reference to a fetcher callable."""
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Fetcher must look like 'module:attr', got {ref!r}")
    module = importlib.import_module(module_name)
    fetcher = getattr(module, attr)
    if not callable(fetcher):
        raise ValueError(f"Fetcher {ref!r} is not callable")
    return fetcher

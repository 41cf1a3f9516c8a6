from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
import threading
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from orderwatch import __version__
from orderwatch.core.audit import log_event
from orderwatch.core.config import Settings
from orderwatch.core.coordinator import Outcome, TaskCoordinator
from orderwatch.core.logging_config import setup_logging
from orderwatch.core.models import Task, TaskStatus
from orderwatch.core.poller import Fetcher, HttpOrderFetcher, load_fetcher, make_job_factory, null_fetcher
from orderwatch.core.registry import TaskRegistry
from orderwatch.core.scheduler import PollScheduler

logger = logging.getLogger("orderwatch.gateway")


class TaskCreate(BaseModel):
    name: str
    source_url: str = ""
    cookie: str = ""


class SelectRequest(BaseModel):
    name: str


def resolve_fetcher(settings: Settings) -> Fetcher:
    if not settings.fetcher:
        return null_fetcher
    if settings.fetcher == "http":
        return HttpOrderFetcher(timeout=settings.fetch_timeout)
    return load_fetcher(settings.fetcher)


def create_app(settings: Optional[Settings] = None, fetcher: Optional[Fetcher] = None) -> FastAPI:
    if settings is None:
        # Ensure .env is loaded before anything reads os.getenv
        load_dotenv(override=False)
        settings = Settings.from_env()
        setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)

    os.makedirs(settings.data_dir, exist_ok=True)

    registry = TaskRegistry(store_path=settings.tasks_path)
    scheduler = PollScheduler()
    coordinator = TaskCoordinator(
        registry,
        scheduler,
        make_job_factory(fetcher or resolve_fetcher(settings)),
        poll_interval=lambda: settings.poll_interval,
    )

    # Bumped on every coordinator notification so polling clients can
    # tell when to re-read tasks and orders.
    revision = {"value": 0}
    revision_lock = threading.Lock()

    def _on_update(_coordinator: TaskCoordinator) -> None:
        with revision_lock:
            revision["value"] += 1

    coordinator.register(_on_update)
    logger.info(
        "Coordinator ready: %d task(s), poll interval %ss, data_dir=%s",
        len(registry.list_tasks()), settings.poll_interval, settings.data_dir,
    )

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        yield
        # Shutdown
        coordinator.stop_all_tasks()
        scheduler.cancel_all()

    app = FastAPI(title="orderwatch", version=__version__, lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.registry = registry
    app.state.scheduler = scheduler

    # ---- helpers ----

    def _task_view(task: Optional[Task]) -> Optional[dict[str, Any]]:
        if task is None:
            return None
        data = task.to_dict()
        data.pop("cookie", None)
        started = coordinator.started_at(task.task_id)
        data["started_at"] = started.isoformat() if started else None
        return data

    def _action(event_type: str, outcome: Outcome) -> dict[str, Any]:
        current = coordinator.current_task
        log_event(settings.data_dir, event_type, {
            "task_id": current.task_id if current else None,
            "outcome": outcome.value,
        })
        return {"outcome": outcome.value, "task": _task_view(current)}

    # ---- routes ----

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/control/status")
    def control_status() -> dict:
        tasks = coordinator.get_tasks()
        current = coordinator.current_task
        with revision_lock:
            rev = revision["value"]
        return {
            "tasks_total": len(tasks),
            "tasks_running": sum(1 for t in tasks if t.status == TaskStatus.RUNNING),
            "tasks_in_error": sum(1 for t in tasks if t.status == TaskStatus.INERROR),
            "polls_active": scheduler.active_count(),
            "selected": current.name if current else None,
            "revision": rev,
        }

    @app.get("/tasks")
    def list_tasks() -> list[dict]:
        return [_task_view(t) for t in coordinator.get_tasks()]

    @app.post("/tasks", status_code=201)
    def add_task(req: TaskCreate) -> dict:
        try:
            task = registry.add_task(req.name, source_url=req.source_url, cookie=req.cookie)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        log_event(settings.data_dir, "task.add", {"task_id": task.task_id, "name": task.name})
        return _task_view(task)

    @app.delete("/tasks/{task_id}")
    def remove_task(task_id: int) -> dict:
        outcome = coordinator.remove_task(task_id)
        if outcome == Outcome.NOT_FOUND:
            raise HTTPException(status_code=404, detail=f"No task with id {task_id}")
        log_event(settings.data_dir, "task.remove", {"task_id": task_id})
        return {"outcome": outcome.value, "task": _task_view(coordinator.current_task)}

    @app.get("/tasks/current")
    def current_task() -> dict:
        return {"task": _task_view(coordinator.current_task)}

    @app.post("/tasks/select")
    def select_task(req: SelectRequest) -> dict:
        return _action("task.select", coordinator.select_task(req.name))

    @app.post("/tasks/start")
    def start_task() -> dict:
        return _action("task.start", coordinator.start_task())

    @app.post("/tasks/stop")
    def stop_task() -> dict:
        return _action("task.stop", coordinator.stop_task())

    @app.post("/tasks/switch")
    def switch_task() -> dict:
        return _action("task.switch", coordinator.switch_status())

    @app.get("/orders")
    def list_orders() -> dict:
        current = coordinator.current_task
        orders = sorted(coordinator.get_orders(), key=lambda o: o.trade_no)
        return {
            "task_id": current.task_id if current else None,
            "orders": [o.to_dict() for o in orders],
        }

    return app

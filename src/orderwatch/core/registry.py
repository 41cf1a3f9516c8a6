"""Task registry: the source of truth for the task list and task status.

Tasks are kept in memory and, when a ``store_path`` is given, mirrored to a
JSON file after every change. The server and the ``orderwatch tasks`` CLI
share that file, so the registry re-reads it whenever it changed on disk
before answering or mutating. Callers always receive copies; status changes
go through :meth:`TaskRegistry.set_status`.

Ids come from a monotonic ``next_id`` counter stored alongside the tasks and
are never handed out twice, even after a removal.
"""
from __future__ import annotations

from dataclasses import replace
import json
import logging
import os
import threading
from typing import Dict, List, Optional, Tuple

from orderwatch.core.models import Task, TaskStatus

logger = logging.getLogger("orderwatch.registry")


class TaskRegistry:
    def __init__(self, store_path: Optional[str] = None) -> None:
        self._tasks: Dict[int, Task] = {}
        self._next_id = 1
        self._store_path = store_path
        self._store_sig: Optional[Tuple[int, int, int]] = None
        self._lock = threading.RLock()
        if store_path:
            self._load()

    def _signature(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self._store_path)
        except OSError:
            return None
        # Each save replaces the file, so the inode changes even when two
        # writes land within one mtime tick.
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self) -> None:
        """Re-read the store if another writer changed it since we last looked."""
        if not self._store_path:
            return
        sig = self._signature()
        if sig is None or sig == self._store_sig:
            return
        self._store_sig = sig
        try:
            with open(self._store_path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
            tasks: Dict[int, Task] = {}
            for item in raw.get("tasks", []):
                task = Task.from_dict(item)
                tasks[task.task_id] = task
            stored_next = int(raw.get("next_id", 0))
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to load tasks: %s", exc)
            return
        self._tasks = tasks
        self._next_id = max(self._next_id, stored_next, max(tasks, default=0) + 1)

    def _save(self) -> None:
        if not self._store_path:
            return
        dir_path = os.path.dirname(self._store_path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        payload = {
            "next_id": self._next_id,
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }
        tmp_path = f"{self._store_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self._store_path)
        self._store_sig = self._signature()

    def list_tasks(self) -> List[Task]:
        """Return copies of all tasks in insertion order."""
        with self._lock:
            self._load()
            return [replace(t) for t in self._tasks.values()]

    def get(self, task_id: int) -> Optional[Task]:
        with self._lock:
            self._load()
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def find_by_name(self, name: str) -> Optional[Task]:
        with self._lock:
            self._load()
            for task in self._tasks.values():
                if task.name == name:
                    return replace(task)
        return None

    def add_task(self, name: str, source_url: str = "", cookie: str = "") -> Task:
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")
        with self._lock:
            self._load()
            if any(t.name == name for t in self._tasks.values()):
                raise ValueError(f"Task name already exists: {name}")
            task_id = self._next_id
            self._next_id += 1
            task = Task(task_id=task_id, name=name, source_url=source_url, cookie=cookie)
            self._tasks[task_id] = task
            self._save()
            logger.info("Task added id=%s name=%s", task_id, name)
            return replace(task)

    def remove_task(self, task_id: int) -> bool:
        with self._lock:
            self._load()
            if self._tasks.pop(task_id, None) is None:
                return False
            self._save()
            logger.info("Task removed id=%s", task_id)
            return True

    def set_status(self, task_id: int, status: TaskStatus) -> Optional[Task]:
        """Set a task's status. Returns the updated task, or None if unknown."""
        if not isinstance(status, TaskStatus):
            raise ValueError(f"Invalid status: {status!r}")
        with self._lock:
            self._load()
            task = self._tasks.get(task_id)
            if task is None:
                return None
            previous = task.status
            task.status = status
            self._save()
            logger.debug("Task %s status %s -> %s", task_id, previous.value, status.value)
            return replace(task)

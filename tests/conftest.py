from __future__ import annotations

import pytest

from orderwatch.core.coordinator import TaskCoordinator
from orderwatch.core.registry import TaskRegistry

from fakes import FakeScheduler, Recorder


@pytest.fixture
def registry():
    reg = TaskRegistry()
    reg.add_task("A")
    reg.add_task("B")
    return reg


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def jobs():
    """Job factory that records the (coordinator, task) pairs it was asked for."""
    created: list = []

    def _factory(coordinator, task):
        created.append((coordinator, task))
        return lambda: None

    _factory.created = created  # type: ignore[attr-defined]
    return _factory


@pytest.fixture
def coordinator(registry, scheduler, jobs):
    return TaskCoordinator(registry, scheduler, jobs, poll_interval=lambda: 60)


@pytest.fixture
def recorder(coordinator):
    rec = Recorder()
    coordinator.register(rec)
    rec.reset()
    return rec

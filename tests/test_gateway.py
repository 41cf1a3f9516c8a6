import json
import os

import pytest
from fastapi.testclient import TestClient

from orderwatch.core import logging_config
from orderwatch.core.config import Settings
from orderwatch.core.gateway import create_app, resolve_fetcher
from orderwatch.core.models import Order, TaskStatus
from orderwatch.core.poller import HttpOrderFetcher, null_fetcher


@pytest.fixture(autouse=True)
def _isolated_log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_config, "_log_dir", str(tmp_path / "logs"))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        log_level="debug",
        log_dir=str(tmp_path / "logs"),
        data_dir=str(tmp_path / "data"),
        poll_interval=60,
        fetcher=None,
        fetch_timeout=5,
        host="127.0.0.1",
        port=18791,
        clear_logs_on_launch=False,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings=settings, fetcher=null_fetcher)) as c:
        yield c


def _add(client: TestClient, name: str, **extra) -> dict:
    response = client.post("/tasks", json={"name": name, **extra})
    assert response.status_code == 201
    return response.json()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_control_status_empty(client) -> None:
    data = client.get("/control/status").json()
    assert data["tasks_total"] == 0
    assert data["polls_active"] == 0
    assert data["selected"] is None
    # Registering the gateway observer delivers one notification.
    assert data["revision"] == 1


def test_add_task_hides_cookie(client) -> None:
    task = _add(client, "alipay", source_url="http://example.test", cookie="secret")
    assert task["task_id"] == 1
    assert task["status"] == "stopped"
    assert "cookie" not in task
    assert task["started_at"] is None


def test_add_duplicate_task_rejected(client) -> None:
    _add(client, "A")
    response = client.post("/tasks", json={"name": "A"})
    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_select_start_stop_flow(settings) -> None:
    # Tasks present at startup: the first one is selected.
    from orderwatch.core.registry import TaskRegistry

    reg = TaskRegistry(store_path=settings.tasks_path)
    reg.add_task("A")
    reg.add_task("B")

    with TestClient(create_app(settings=settings, fetcher=null_fetcher)) as client:
        assert client.get("/tasks/current").json()["task"]["name"] == "A"

        resp = client.post("/tasks/select", json={"name": "B"}).json()
        assert resp["outcome"] == "applied"
        assert resp["task"]["name"] == "B"
        assert client.post("/tasks/select", json={"name": "B"}).json()["outcome"] == "unchanged"
        assert client.post("/tasks/select", json={"name": "Z"}).json()["outcome"] == "not_found"

        resp = client.post("/tasks/start").json()
        assert resp["outcome"] == "applied"
        assert resp["task"]["status"] == "running"
        assert resp["task"]["started_at"] is not None

        status = client.get("/control/status").json()
        assert status["tasks_running"] == 1
        assert status["polls_active"] == 1
        assert status["selected"] == "B"

        resp = client.post("/tasks/stop").json()
        assert resp["task"]["status"] == "stopped"
        assert resp["task"]["started_at"] is None
        assert client.get("/control/status").json()["polls_active"] == 0

        assert client.post("/tasks/switch").json()["task"]["status"] == "running"
        assert client.post("/tasks/switch").json()["task"]["status"] == "stopped"

    with open(os.path.join(settings.data_dir, "audit.jsonl"), "r", encoding="utf-8") as handle:
        events = [json.loads(line)["type"] for line in handle if line.strip()]
    assert events[:2] == ["task.select", "task.select"]
    assert "task.start" in events
    assert "task.switch" in events


def test_orders_scoped_and_sorted(settings) -> None:
    app = create_app(settings=settings, fetcher=null_fetcher)
    with TestClient(app) as client:
        _add(client, "A")
        _add(client, "B")
        client.post("/tasks/select", json={"name": "A"})
        coordinator = app.state.coordinator
        coordinator.add_order(Order(task_id=1, trade_no="T2"))
        coordinator.add_order(Order(task_id=1, trade_no="T1"))
        coordinator.add_order(Order(task_id=2, trade_no="T3"))

        data = client.get("/orders").json()
        assert data["task_id"] == 1
        assert [o["trade_no"] for o in data["orders"]] == ["T1", "T2"]


def test_orders_without_selection(client) -> None:
    assert client.get("/orders").json() == {"task_id": None, "orders": []}


def test_revision_tracks_notifications(settings) -> None:
    app = create_app(settings=settings, fetcher=null_fetcher)
    with TestClient(app) as client:
        _add(client, "A")
        _add(client, "B")
        before = client.get("/control/status").json()["revision"]
        client.post("/tasks/select", json={"name": "B"})
        assert client.get("/control/status").json()["revision"] == before + 1


def test_shutdown_stops_running_tasks(settings) -> None:
    app = create_app(settings=settings, fetcher=null_fetcher)
    with TestClient(app) as client:
        _add(client, "A")
        client.post("/tasks/select", json={"name": "A"})
        client.post("/tasks/start")
    registry = app.state.registry
    assert registry.get(1).status == TaskStatus.STOPPED
    assert app.state.scheduler.active_count() == 0


def test_resolve_fetcher(settings) -> None:
    assert resolve_fetcher(settings) is null_fetcher
    settings.fetcher = "http"
    assert isinstance(resolve_fetcher(settings), HttpOrderFetcher)
    settings.fetcher = "orderwatch.core.poller:null_fetcher"
    assert resolve_fetcher(settings) is null_fetcher


def test_remove_running_task_cancels_poll(settings) -> None:
    app = create_app(settings=settings, fetcher=null_fetcher)
    with TestClient(app) as client:
        _add(client, "A")
        _add(client, "B")
        client.post("/tasks/select", json={"name": "A"})
        client.post("/tasks/start")
        assert client.get("/control/status").json()["polls_active"] == 1

        resp = client.delete("/tasks/1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["outcome"] == "applied"
        assert data["task"]["name"] == "B"

        status = client.get("/control/status").json()
        assert status["polls_active"] == 0
        assert status["tasks_total"] == 1
        assert app.state.scheduler.get_handle(1) is None

        assert client.delete("/tasks/1").status_code == 404
        assert _add(client, "C")["task_id"] == 3


def test_task_added_by_cli_survives_server_writes(settings) -> None:
    from orderwatch.core.registry import TaskRegistry

    app = create_app(settings=settings, fetcher=null_fetcher)
    with TestClient(app) as client:
        _add(client, "A")
        TaskRegistry(store_path=settings.tasks_path).add_task("B")
        client.post("/tasks/select", json={"name": "A"})
        client.post("/tasks/start")
        names = [t["name"] for t in client.get("/tasks").json()]
        assert names == ["A", "B"]

    reloaded = TaskRegistry(store_path=settings.tasks_path)
    assert [t.name for t in reloaded.list_tasks()] == ["A", "B"]

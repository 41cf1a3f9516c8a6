import pytest

from orderwatch.core.models import Order, Task, TaskStatus


def test_order_requires_trade_no() -> None:
    with pytest.raises(ValueError, match="trade_no"):
        Order(task_id=1, trade_no="")


def test_order_key() -> None:
    assert Order(task_id=2, trade_no="T9").key == (2, "T9")


def test_order_from_dict_coerces_fields() -> None:
    order = Order.from_dict({"task_id": "4", "trade_no": 123, "amount": 5})
    assert order.task_id == 4
    assert order.trade_no == "123"
    assert order.amount == "5"
    assert order.extra == {}


def test_status_parse() -> None:
    assert TaskStatus.parse("RUNNING") is TaskStatus.RUNNING
    assert TaskStatus.parse(None) is TaskStatus.STOPPED
    assert TaskStatus.parse("paused") is TaskStatus.STOPPED


def test_task_to_dict() -> None:
    task = Task(task_id=1, name="a", status=TaskStatus.INERROR)
    data = task.to_dict()
    assert data["status"] == "inerror"
    assert Task.from_dict(data).created_at == task.created_at

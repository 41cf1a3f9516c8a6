"""Tasks and the orders fetched for them."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    INERROR = "inerror"

    @classmethod
    def parse(cls, raw: Optional[str]) -> TaskStatus:
        if not raw:
            return cls.STOPPED
        try:
            return cls(raw.lower())
        except ValueError:
            return cls.STOPPED


@dataclass
class Task:
    """A collection task polled by the scheduler."""
    task_id: int
    name: str
    status: TaskStatus = TaskStatus.STOPPED
    source_url: str = ""                # endpoint the fetcher reads from
    cookie: str = ""                    # sent verbatim as the Cookie header
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self.status.value,
            "source_url": self.source_url,
            "cookie": self.cookie,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Task:
        created = d.get("created_at")
        return cls(
            task_id=int(d["task_id"]),
            name=d["name"],
            status=TaskStatus.parse(d.get("status")),
            source_url=d.get("source_url", ""),
            cookie=d.get("cookie", ""),
            created_at=datetime.fromisoformat(created) if created else _now(),
        )


@dataclass
class Order:
    """One fetched order, keyed by ``trade_no`` within its task."""
    task_id: int
    trade_no: str
    title: str = ""
    amount: str = ""
    counterparty: str = ""
    status: str = ""
    traded_at: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.trade_no:
            raise ValueError("trade_no is required")

    @property
    def key(self) -> Tuple[int, str]:
        return (self.task_id, self.trade_no)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "trade_no": self.trade_no,
            "title": self.title,
            "amount": self.amount,
            "counterparty": self.counterparty,
            "status": self.status,
            "traded_at": self.traded_at,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Order:
        return cls(
            task_id=int(d["task_id"]),
            trade_no=str(d.get("trade_no") or ""),
            title=str(d.get("title", "")),
            amount=str(d.get("amount", "")),
            counterparty=str(d.get("counterparty", "")),
            status=str(d.get("status", "")),
            traded_at=str(d.get("traded_at", "")),
            extra=d.get("extra") or {},
        )

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class Settings:
    log_level: str
    log_dir: str
    data_dir: str
    poll_interval: int
    fetcher: str | None
    fetch_timeout: int
    host: str
    port: int
    clear_logs_on_launch: bool

    @property
    def tasks_path(self) -> str:
        return os.path.join(self.data_dir, "tasks.json")

    @staticmethod
    def from_env() -> "Settings":
        default_home = Path(os.path.expanduser("~")) / ".orderwatch"
        return Settings(
            log_level=os.getenv("ORDERWATCH_LOG_LEVEL", "info"),
            log_dir=os.getenv("ORDERWATCH_LOG_DIR") or str(default_home / ".logs"),
            data_dir=os.getenv("ORDERWATCH_DATA_DIR") or str(default_home / ".data"),
            poll_interval=int(os.getenv("ORDERWATCH_POLL_INTERVAL", "60")),
            fetcher=os.getenv("ORDERWATCH_FETCHER") or None,
            fetch_timeout=int(os.getenv("ORDERWATCH_FETCH_TIMEOUT", "20")),
            host=os.getenv("ORDERWATCH_HOST", "127.0.0.1"),
            port=int(os.getenv("ORDERWATCH_PORT", "18791")),
            clear_logs_on_launch=os.getenv("ORDERWATCH_CLEAR_LOGS_ON_LAUNCH", "false").lower() in {"1", "true", "yes"},
        )

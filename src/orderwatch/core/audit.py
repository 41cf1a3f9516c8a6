from __future__ import annotations

from datetime import datetime, timezone
import json
import os
from typing import Any, Dict, List

from orderwatch.core.logging_config import append_to_file, get_audit_log_path


def log_event(data_dir: str, event_type: str, payload: Dict[str, Any]) -> None:
    os.makedirs(data_dir, exist_ok=True)
    path = os.path.join(data_dir, "audit.jsonl")
    record: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "type": event_type,
        "payload": payload,
    }
    line = json.dumps(record, default=str)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(line + "\n")
    # Mirror to centralized audit log
    try:
        central = get_audit_log_path()
        if central != path:
            append_to_file(central, line)
    except Exception:  # noqa: BLE001
        pass


def read_events(data_dir: str, limit: int = 50) -> List[dict]:
    path = os.path.join(data_dir, "audit.jsonl")
    if not os.path.exists(path):
        return []
    events: List[dict] = []
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if line:
                events.append(json.loads(line))
    return events[-limit:]

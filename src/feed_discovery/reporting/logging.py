from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Protocol


class EventLogger(Protocol):
    def __call__(self, event: str, payload: Mapping[str, Any]) -> None:
        ...


def log_event(
    event: str,
    payload: Mapping[str, Any],
    log_path: Path | None = None,
    echo: bool = True,
) -> None:
    record = {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    line = json.dumps(record, default=_json_default)
    if echo:
        # stdout is reserved for command output.
        print(line, file=sys.stderr)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def jsonl_logger(log_path: Path | None = None, echo: bool = True) -> EventLogger:
    def _log(event: str, payload: Mapping[str, Any]) -> None:
        log_event(event, payload, log_path=log_path, echo=echo)

    return _log


def null_logger(event: str, payload: Mapping[str, Any]) -> None:
    return None


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "__dict__"):
        return value.__dict__
    return str(value)

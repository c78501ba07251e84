"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- Level threshold configured once at startup (AppConfig.log_level)
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

_threshold: int = _LEVELS["INFO"]


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def configure(level: str) -> None:
    """Set the minimum level emitted by log_event(). Unknown names mean INFO."""
    global _threshold  # pylint: disable=global-statement
    _threshold = _LEVELS.get(level.upper(), _LEVELS["INFO"])


def log_event(event: Mapping[str, Any], *, level: str = "INFO") -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies event_type and any context (session_id, state, ...).

    This function:
    - Stamps ts_ms and level when the caller did not
    - Serializes to JSON
    - Writes exactly one line
    - Never raises
    """
    if _LEVELS.get(level, _LEVELS["INFO"]) < _threshold:
        return

    payload: dict[str, Any] = {"ts_ms": time.time_ns() // 1_000_000, "level": level}
    payload.update(event)

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback; logging must never crash the session
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "level": level,
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)

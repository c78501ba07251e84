"""
Timing helpers for observability.

- Durations use monotonic time (immune to clock changes)
- One metric = one log event via observability.logger
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


def start_timer(name: str) -> str:
    """
    Start a monotonic timer.

    Callers MUST call stop_timer() in a finally block
    unless using the `timed()` context manager.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    session_id: int | None = None,
    outcome: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a METRIC_TIMER event.

    Returns:
        duration_ms if the timer existed, else None
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    log_event({
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "outcome": outcome,
        "details": details or {},
    })

    return duration_ms


class TimedScope:
    """Mutable handle yielded by timed(); lets the block record its outcome."""

    def __init__(self) -> None:
        self.outcome: str = "ok"
        self.details: dict[str, Any] = {}


@contextmanager
def timed(name: str, *, session_id: int | None = None) -> Iterator[TimedScope]:
    """
    Measure a block and emit exactly one metric.

    Exceptions inside the block are not suppressed; the outcome is
    recorded as the exception class name unless the block set one.

    Usage:
        with timed("capture_acquisition_ms", session_id=sid) as scope:
            fmt = await negotiate()
            scope.details["route_mode"] = fmt.mode.value
    """
    scope = TimedScope()
    timer_id = start_timer(name)
    try:
        yield scope
    except BaseException as exc:
        if scope.outcome == "ok":
            scope.outcome = type(exc).__name__
        raise
    finally:
        stop_timer(
            timer_id,
            session_id=session_id,
            outcome=scope.outcome,
            details=scope.details,
        )

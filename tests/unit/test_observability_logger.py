# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability import metrics


@pytest.fixture(name="captured")
def fixture_captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_threshold", logger._LEVELS["INFO"])  # pylint: disable=protected-access
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - caller payload is preserved
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    decoded = json.loads(captured[0])

    # Caller keys survive unchanged; ts_ms and level are stamped alongside
    assert payload.items() <= decoded.items()
    assert decoded["level"] == "INFO"
    assert isinstance(decoded["ts_ms"], int)


def test_events_below_threshold_are_dropped(captured: list[str]) -> None:
    logger.configure("WARNING")

    logger.log_event({"event_type": "QUIET"}, level="INFO")
    logger.log_event({"event_type": "LOUD"}, level="ERROR")

    assert [json.loads(line)["event_type"] for line in captured] == ["LOUD"]


def test_unserializable_payload_falls_back(captured: list[str]) -> None:
    logger.log_event({"event_type": "BAD", "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert "BAD" in decoded["original_event_repr"]


def test_timed_records_outcome_and_reraises(captured: list[str]) -> None:
    with pytest.raises(KeyError):
        with metrics.timed("unit_ms", session_id=7) as scope:
            scope.details["step"] = "lookup"
            raise KeyError("missing")

    decoded = json.loads(captured[-1])
    assert decoded["event_type"] == "METRIC_TIMER"
    assert decoded["metric"] == "unit_ms"
    assert decoded["session_id"] == 7
    assert decoded["outcome"] == "KeyError"
    assert decoded["details"] == {"step": "lookup"}


def test_stop_unknown_timer_returns_none(captured: list[str]) -> None:
    assert metrics.stop_timer("timer_missing") is None
    assert not captured

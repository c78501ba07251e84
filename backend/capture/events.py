"""
Events emitted by transcription sinks.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- Every event carries the session_id it belongs to; the controller drops
  events whose session_id is not the live session (stale gating).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SinkEventType(str, Enum):
    """Event types a TranscriptionSink may emit."""

    TRANSCRIPT_PARTIAL = "TRANSCRIPT_PARTIAL"
    TRANSCRIPT_FINAL = "TRANSCRIPT_FINAL"
    TRANSCRIPT_ERROR = "TRANSCRIPT_ERROR"


@dataclass(frozen=True)
class SinkEvent:
    """
    Base class for all sink events.

    ts_ms:
        Wall-clock milliseconds. Observability only.
    """
    event_type: SinkEventType
    ts_ms: int
    session_id: int


@dataclass(frozen=True)
class TranscriptPartial(SinkEvent):
    """
    Interim hypothesis. May be revised by later partials.
    """
    text: str


@dataclass(frozen=True)
class TranscriptFinal(SinkEvent):
    """
    Finalized text for one utterance.

    Does NOT end the session; dictation continues until stop().
    """
    text: str


@dataclass(frozen=True)
class TranscriptError(SinkEvent):
    """
    Unrecoverable recognition error for this session.
    """
    cause: str

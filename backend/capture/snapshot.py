"""
Observable session view.

A SessionSnapshot is published to observers on every change of state,
recording flag, result or error. Snapshots are immutable; observers
never see a half-updated session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from audio.formats import RouteMode
from capture.enums.state import SessionState
from capture.errors import SessionError


@dataclass(frozen=True)
class TranscriptionResult:
    """Latest recognition hypothesis relayed from the sink."""
    text: str
    is_final: bool


@dataclass(frozen=True)
class SessionSnapshot:
    """
    state:
        Current SessionState.

    is_recording:
        True exactly while STREAMING.

    last_result:
        Most recent result of the current (or last) session.
        Cleared when a new session starts acquiring.

    last_error:
        Most recent error. Cleared when a new session starts acquiring.

    route_mode:
        Activated route, None when no route is held.

    session_id:
        Monotonic per controller; 0 before the first start().
    """
    state: SessionState = SessionState.IDLE
    is_recording: bool = False
    last_result: TranscriptionResult | None = None
    last_error: SessionError | None = None
    route_mode: RouteMode | None = None
    session_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready view for the HTTP surface."""
        return {
            "state": self.state.value,
            "is_recording": self.is_recording,
            "last_result": (
                {"text": self.last_result.text, "is_final": self.last_result.is_final}
                if self.last_result is not None
                else None
            ),
            "last_error": (
                self.last_error.to_dict() if self.last_error is not None else None
            ),
            "route_mode": self.route_mode.value if self.route_mode else None,
            "session_id": self.session_id,
        }

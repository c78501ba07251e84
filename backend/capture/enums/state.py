"""
Authoritative capture session state enumeration.

Rules:
- This enum defines ONLY the session control states.
- No behavior, no helper methods, no side effects.
- Transitions are performed exclusively by CaptureSessionController.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of the single microphone capture session.

    IDLE:
        Initial and terminal state. No route claimed, no source running.

    ACQUIRING:
        Permission checks, route negotiation and source startup in flight.

    STREAMING:
        Route active and source delivering buffers to the sink.

    STOPPING:
        Teardown in progress (sink cancel, source stop, route release).

    FAILED:
        Transient: an acquisition step failed and rollback is running.
        Always followed by IDLE.
    """

    IDLE = "IDLE"
    ACQUIRING = "ACQUIRING"
    STREAMING = "STREAMING"
    STOPPING = "STOPPING"
    FAILED = "FAILED"

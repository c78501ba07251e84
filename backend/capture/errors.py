"""
Capture session error taxonomy.

Every error raised from CaptureSessionController.start() or published on a
SessionSnapshot is a SessionError with a stable `code`. The HTTP surface maps
codes to status codes; the codes never change meaning.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base for capture session failures."""

    code: str = "session_error"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class AuthorizationDenied(SessionError):
    """Speech recognition or microphone access was refused."""

    code = "authorization_denied"

    def __init__(self, what: str = "speech") -> None:
        super().__init__(f"{what} authorization denied")
        self.what = what


class AlreadyActive(SessionError):
    """start() was called while a session is not IDLE."""

    code = "already_active"

    def __init__(self, state: str) -> None:
        super().__init__(f"capture session already active (state={state})")
        self.state = state


class RouteUnavailable(SessionError):
    """No route configuration could be activated, or the route was lost."""

    code = "route_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__(f"audio route unavailable: {reason}")
        self.reason = reason


class SourceUnavailable(SessionError):
    """The audio source could not start or faulted while streaming."""

    code = "source_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__(f"audio source unavailable: {reason}")
        self.reason = reason


class RecognitionFailed(SessionError):
    """The transcription sink reported an error."""

    code = "recognition_failed"

    def __init__(self, cause: str) -> None:
        super().__init__(f"recognition failed: {cause}")
        self.cause = cause


class AcquisitionCancelled(SessionError):
    """stop() was requested while acquisition was in flight."""

    code = "acquisition_cancelled"

    def __init__(self) -> None:
        super().__init__("capture acquisition cancelled by stop request")

"""Device-level audio failures, raised below the capture session layer."""

from __future__ import annotations

from audio.formats import RouteMode


class RouteActivationError(Exception):
    """A single route configuration was rejected by the platform."""

    def __init__(self, mode: RouteMode, reason: str) -> None:
        super().__init__(f"{mode.value} route rejected: {reason}")
        self.mode = mode
        self.reason = reason


class SourceStartError(Exception):
    """The input stream could not be opened or started."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

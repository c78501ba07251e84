"""
Process-wide capture controller ownership.

The microphone cannot serve two sessions, so exactly one controller may be
live per process. Lifecycle is explicit: install once at startup, dispose at
shutdown (which tears the session down).
"""

from __future__ import annotations

from capture.controller import CaptureSessionController
from observability.logger import log_event


_controller: CaptureSessionController | None = None


def install_controller(controller: CaptureSessionController) -> CaptureSessionController:
    """
    Make controller the process capture controller.

    Raises:
        RuntimeError if another controller is already installed.
    """
    global _controller  # pylint: disable=global-statement
    if _controller is not None and _controller is not controller:
        raise RuntimeError("a capture controller is already installed")
    _controller = controller
    log_event({"event_type": "CAPTURE_CONTROLLER_INSTALLED"})
    return controller


def get_controller() -> CaptureSessionController:
    if _controller is None:
        raise RuntimeError("no capture controller installed")
    return _controller


async def dispose_controller() -> None:
    """Tear down the live session (if any) and uninstall. Idempotent."""
    global _controller  # pylint: disable=global-statement
    controller = _controller
    _controller = None
    if controller is None:
        return
    await controller.stop_and_wait()
    log_event({"event_type": "CAPTURE_CONTROLLER_DISPOSED"})

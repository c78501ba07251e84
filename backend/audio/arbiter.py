"""
Process-wide exclusive claim on the audio route.

The microphone/speaker route is a single shared resource. Exactly one
owner may hold it; other consumers learn about releases through listeners
and about preemption through the callback they registered when claiming.

Rules:
- No device access here; this is bookkeeping only.
- Callbacks run outside the internal lock and never propagate exceptions.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from observability.logger import log_event


PreemptCallback = Callable[[str], None]
ReleaseListener = Callable[[str], None]


class RouteBusyError(Exception):
    """The route is held by another owner and preemption was not requested."""

    def __init__(self, holder: str) -> None:
        super().__init__(f"audio route held by {holder!r}")
        self.holder = holder


@dataclass(frozen=True)
class _Claim:
    owner: str
    on_preempt: PreemptCallback | None


class RouteArbiter:
    """
    Exclusive claim registry.

    claim():   take the route (optionally preempting the current holder)
    release(): give it back and notify release listeners
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claim: _Claim | None = None
        self._listeners: list[ReleaseListener] = []

    @property
    def holder(self) -> str | None:
        with self._lock:
            return self._claim.owner if self._claim else None

    def claim(
        self,
        owner: str,
        *,
        on_preempt: PreemptCallback | None = None,
        preempt: bool = False,
    ) -> None:
        """
        Claim the route for owner.

        Re-claiming by the current holder replaces its callback.

        Raises:
            RouteBusyError if another owner holds it and preempt is False.
        """
        displaced: _Claim | None = None
        with self._lock:
            current = self._claim
            if current is not None and current.owner != owner:
                if not preempt:
                    raise RouteBusyError(current.owner)
                displaced = current
            self._claim = _Claim(owner=owner, on_preempt=on_preempt)

        if displaced is not None:
            log_event({
                "event_type": "ROUTE_PREEMPTED",
                "previous_owner": displaced.owner,
                "new_owner": owner,
            }, level="WARNING")
            if displaced.on_preempt is not None:
                _safe_call(displaced.on_preempt, owner, "preempt_callback")

    def release(self, owner: str) -> bool:
        """
        Release the route if owner holds it.

        Returns True if a claim was released. Releasing a route the owner
        does not hold is a no-op (idempotent teardown).
        """
        with self._lock:
            if self._claim is None or self._claim.owner != owner:
                return False
            self._claim = None
            listeners = list(self._listeners)

        for listener in listeners:
            _safe_call(listener, owner, "release_listener")
        return True

    def add_release_listener(self, listener: ReleaseListener) -> Callable[[], None]:
        """Register a release listener; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove


def _safe_call(fn: Callable[[str], None], arg: str, kind: str) -> None:
    try:
        fn(arg)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "ROUTE_CALLBACK_FAILED",
            "callback": kind,
            "exception": type(exc).__name__,
            "message": str(exc),
        }, level="ERROR")


_default_arbiter = RouteArbiter()


def get_arbiter() -> RouteArbiter:
    """The process-wide arbiter shared by capture and playback."""
    return _default_arbiter

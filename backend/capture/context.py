"""
Capture collaborators.

Narrow Protocols (capabilities, not implementations) for everything the
CaptureSessionController drives. Tests substitute fakes that conform
structurally.

This module contains:
- Zero session logic
- Zero state mutation
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from audio.formats import ActiveFormat
from capture.enums.authorization import Authorization
from capture.events import SinkEvent


EmitSinkEvent = Callable[[SinkEvent], Coroutine[Any, Any, None]]


# ---------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------

@runtime_checkable
class RouteNegotiatorProtocol(Protocol):
    @property
    def active(self) -> ActiveFormat | None: ...
    def set_interruption_handler(
        self,
        handler: Callable[[str], None] | None,
    ) -> None: ...
    async def negotiate(self) -> ActiveFormat: ...
    def deactivate(self) -> None: ...


@runtime_checkable
class AudioSourceProtocol(Protocol):
    def start(
        self,
        fmt: ActiveFormat,
        on_buffer: Callable[[bytes], None],
        on_fault: Callable[[str], None] | None = None,
    ) -> None: ...
    def stop(self) -> None: ...


# ---------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------

@runtime_checkable
class TranscriptionSinkProtocol(Protocol):
    async def start_stream(self, session_id: int, fmt: ActiveFormat) -> None: ...
    async def push_buffer(self, session_id: int, sequence_num: int, pcm_bytes: bytes) -> None: ...
    async def cancel(self, session_id: int) -> None: ...


SinkFactory = Callable[[EmitSinkEvent], TranscriptionSinkProtocol]


# ---------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------

@runtime_checkable
class PermissionsProtocol(Protocol):
    @property
    def speech_authorization(self) -> Authorization: ...
    async def request_speech_authorization(self) -> Authorization: ...
    async def request_microphone_access(self) -> bool: ...

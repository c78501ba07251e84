"""
Transcription sink contract.

This module defines the *interface only*: no buffering, retries, timers,
or session decisions live here.

Key invariants:
- Session IDs are owned by the capture controller (monotonic per controller).
  Sinks never generate or mutate session IDs.
- The sink emits sink events; it does not touch session state.
- One sink instance serves one session. A new session gets a new sink.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from audio.formats import ActiveFormat


class TranscriptionSink(ABC):
    """
    Abstract interface for a streaming recognition sink.

    Note: emit_event callback must be async.

    Implementations are responsible for:
    - Opening a recognition stream at the activated format via start_stream()
    - Accepting PCM16 mono buffers for that session via push_buffer()
    - Producing TranscriptPartial / TranscriptFinal / TranscriptError events
    - Supporting cancellation via cancel()

    Non-responsibilities:
    - No session state machine (IDLE/STREAMING/etc.)
    - No device access
    - No HTTP surface
    """

    @abstractmethod
    async def start_stream(self, session_id: int, fmt: ActiveFormat) -> None:
        """
        Open the recognition stream for session_id.

        Every buffer pushed afterwards is in fmt. Connection failures are
        reported as TranscriptError events, not raised.
        """
        raise NotImplementedError

    @abstractmethod
    async def push_buffer(self, session_id: int, sequence_num: int, pcm_bytes: bytes) -> None:
        """
        Provide one PCM16 mono buffer to the recognizer.

        Args:
            session_id: Controller-owned session identifier.
            sequence_num: Monotonic buffer sequence number (debug/observability).
            pcm_bytes: Raw PCM16LE bytes for exactly one source buffer.

        Contract:
        - If session_id is not the open stream, the buffer is dropped.
        - Buffers are forwarded in call order.
        """
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, session_id: int) -> None:
        """
        Stop the stream for session_id and release its connection.

        Contract:
        - After cancellation, no more events are emitted for session_id.
        - cancel() MUST be idempotent.
        - Unknown or already-closed session_id is a no-op.
        """
        raise NotImplementedError

"""
Push-based microphone source on top of a PortAudio input stream.

Responsibilities:
- Open/start an InputStream with exactly the negotiated ActiveFormat
- Convert each hardware block to PCM16 mono bytes and push it to ONE consumer
- Report host faults (overflow, device loss, format change) once per start
- Stop idempotently

Non-responsibilities:
- No route claim (AudioRouteNegotiator)
- No queueing or thread hand-off (the consumer's callback must be cheap)
- No restart: once stopped, a new start() is required

Threading:
- on_buffer and on_fault run on the PortAudio callback thread.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

import numpy as np
import sounddevice as sd
from numpy.typing import NDArray

from audio.errors import SourceStartError
from audio.formats import ActiveFormat
from audio.pcm import downmix_to_mono, float32_to_pcm16le
from observability.logger import log_event


BufferCallback = Callable[[bytes], None]
FaultCallback = Callable[[str], None]


class AudioStreamSource:
    """
    Lazy, infinite, non-restartable buffer producer.

    Each start() gets a fresh generation number; callbacks from an older
    stream are ignored, so a source never has two active consumers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stream: Any = None
        self._fmt: ActiveFormat | None = None
        self._on_buffer: BufferCallback | None = None
        self._on_fault: FaultCallback | None = None
        self._generation: int = 0
        self._faulted: bool = False

    @property
    def running(self) -> bool:
        return self._stream is not None

    @property
    def format(self) -> ActiveFormat | None:
        return self._fmt

    def start(
        self,
        fmt: ActiveFormat,
        on_buffer: BufferCallback,
        on_fault: FaultCallback | None = None,
    ) -> None:
        """
        Start delivering buffers at fmt.

        Any previously installed callback/stream is removed first.

        Raises:
            SourceStartError if PortAudio refuses the stream, or the opened
            stream does not run at the negotiated rate.
        """
        self.stop()

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._fmt = fmt
            self._on_buffer = on_buffer
            self._on_fault = on_fault
            self._faulted = False

        stream: Any = None
        try:
            stream = sd.InputStream(
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                blocksize=fmt.blocksize,
                dtype=fmt.dtype,
                device=fmt.device,
                latency=fmt.latency,
                callback=self._make_callback(generation),
                finished_callback=self._make_finished(generation),
            )
            actual_rate = int(stream.samplerate)
            if actual_rate != fmt.sample_rate:
                raise SourceStartError(
                    f"format_mismatch: negotiated {fmt.sample_rate}Hz, "
                    f"stream opened at {actual_rate}Hz"
                )
            stream.start()
        except SourceStartError:
            self._discard(stream)
            raise
        except (sd.PortAudioError, ValueError) as exc:
            self._discard(stream)
            raise SourceStartError(f"stream_start_failed: {exc}") from exc

        with self._lock:
            self._stream = stream

        log_event({
            "event_type": "SOURCE_STARTED",
            **fmt.describe(),
        })

    def stop(self) -> None:
        """
        Stop the stream and remove the buffer callback.

        Idempotent; a no-op if start() was never called.
        """
        with self._lock:
            stream = self._stream
            self._stream = None
            self._on_buffer = None
            self._on_fault = None
            # Invalidate callbacks still in flight from this stream
            self._generation += 1

        if stream is None:
            return

        try:
            stream.stop()
        finally:
            stream.close()
            log_event({"event_type": "SOURCE_STOPPED"})

    # ------------------------------------------------------------------
    # PortAudio callbacks
    # ------------------------------------------------------------------

    def _make_callback(self, generation: int) -> Callable[..., None]:
        def _callback(
            indata: NDArray[np.float32],
            frames: int,
            time_info: Any,  # pylint: disable=unused-argument
            status: Any,
        ) -> None:
            with self._lock:
                if generation != self._generation or self._faulted:
                    return
                on_buffer = self._on_buffer
                fmt = self._fmt

            if on_buffer is None or fmt is None:
                return

            if status and getattr(status, "input_overflow", False):
                self._fault(generation, "input_overflow")
                return

            channels = indata.shape[1] if indata.ndim > 1 else 1
            if frames != fmt.blocksize or channels != fmt.channels:
                self._fault(generation, "format_changed")
                return

            on_buffer(float32_to_pcm16le(downmix_to_mono(indata)))

        return _callback

    def _make_finished(self, generation: int) -> Callable[[], None]:
        def _finished() -> None:
            # Fires after our own stop() too; generation check filters that out
            self._fault(generation, "stream_finished")

        return _finished

    def _fault(self, generation: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation or self._faulted:
                return
            self._faulted = True
            on_fault = self._on_fault

        log_event({
            "event_type": "SOURCE_FAULT",
            "reason": reason,
        }, level="WARNING")
        if on_fault is not None:
            on_fault(reason)

    @staticmethod
    def _discard(stream: Any) -> None:
        if stream is None:
            return
        try:
            stream.close()
        except sd.PortAudioError as exc:
            log_event({
                "event_type": "SOURCE_CLOSE_FAILED",
                "message": str(exc),
            }, level="WARNING")

"""
Permission checks for capture.

Two one-shot async queries:
- Speech authorization (three-valued, cached for the process lifetime)
- Microphone access (boolean, checked once per start attempt)

On a server host there is no OS consent dialog: speech authorization is
GRANTED when a recognition credential is configured, and microphone access
is granted when an input stream can actually be opened on the device.
"""

from __future__ import annotations

import asyncio

import sounddevice as sd

from capture.enums.authorization import Authorization
from constants import (
    CAPTURE_DTYPE,
    MIC_CHECK_BLOCKSIZE_FRAMES,
    MIC_CHECK_SAMPLE_RATE_HZ,
)
from observability.logger import log_event


class PermissionBroker:
    """Process-wide permission state for the capture controller."""

    def __init__(
        self,
        *,
        recognition_credential: str | None,
        device: int | str | None = None,
    ) -> None:
        self._credential = recognition_credential
        self._device = device
        self._speech = Authorization.UNKNOWN
        self._lock = asyncio.Lock()

    @property
    def speech_authorization(self) -> Authorization:
        return self._speech

    async def request_speech_authorization(self) -> Authorization:
        """
        Resolve speech authorization once; later calls return the cached value.
        """
        async with self._lock:
            if self._speech is Authorization.UNKNOWN:
                self._speech = (
                    Authorization.GRANTED if self._credential
                    else Authorization.DENIED
                )
                log_event({
                    "event_type": "SPEECH_AUTHORIZATION",
                    "status": self._speech.value,
                })
            return self._speech

    async def request_microphone_access(self) -> bool:
        granted = await asyncio.to_thread(self._open_test_stream)
        log_event({
            "event_type": "MICROPHONE_ACCESS",
            "granted": granted,
        }, level="INFO" if granted else "WARNING")
        return granted

    def _open_test_stream(self) -> bool:
        try:
            with sd.InputStream(
                device=self._device,
                channels=1,
                samplerate=MIC_CHECK_SAMPLE_RATE_HZ,
                blocksize=MIC_CHECK_BLOCKSIZE_FRAMES,
                dtype=CAPTURE_DTYPE,
            ):
                pass
        except (sd.PortAudioError, ValueError) as exc:
            log_event({
                "event_type": "MICROPHONE_CHECK_FAILED",
                "message": str(exc),
            }, level="WARNING")
            return False
        return True

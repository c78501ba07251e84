"""
Audio route and buffer primitives.

Pure data containers only.
No behavior, no queues, no device access.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from constants import CAPTURE_DTYPE, PCM_SAMPLE_WIDTH_BYTES


class RouteMode(str, Enum):
    """
    Which route configuration was requested or activated.

    PRIMARY:
        Capture-oriented configuration (recognition-native rate, low latency,
        configured device).

    FALLBACK:
        Simplified configuration with reduced options (device default rate,
        default device, high latency).
    """

    PRIMARY = "PRIMARY"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class RouteConfig:
    """
    Requested route configuration.

    sample_rate:
        Requested rate in Hz, or None to take the device default.

    device:
        PortAudio device index or name substring; None means system default.
    """
    mode: RouteMode
    sample_rate: int | None
    channels: int
    device: int | str | None
    latency: str
    blocksize: int


@dataclass(frozen=True)
class ActiveFormat:
    """
    Format the route actually activated.

    Queried from the device after activation; the source MUST open its
    stream with exactly these values.
    """
    mode: RouteMode
    sample_rate: int
    channels: int
    device: int | None
    blocksize: int
    latency: str
    dtype: str = CAPTURE_DTYPE

    @property
    def bytes_per_buffer(self) -> int:
        """Size of one PCM16 mono buffer produced by the source."""
        return self.blocksize * PCM_SAMPLE_WIDTH_BYTES

    @property
    def buffer_duration_s(self) -> float:
        return self.blocksize / float(self.sample_rate)

    def describe(self) -> dict[str, int | str | None]:
        """Flat mapping for log events."""
        return {
            "route_mode": self.mode.value,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "device": self.device,
            "blocksize": self.blocksize,
            "latency": self.latency,
        }


@dataclass(frozen=True)
class CaptureBuffer:
    """
    One captured buffer on its way from the hardware callback to the sink.

    sequence_num:
        Monotonic per session, starting at 1. Used for ordering checks
        and debugging only.

    pcm_bytes:
        PCM16 little-endian mono samples.

    ts_ms:
        Wall-clock time the callback fired. Observability only.

    session_id:
        Capture session that produced the buffer.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int
    session_id: int

"""PCM conversion utilities."""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def downmix_to_mono(block: NDArray[np.float32]) -> NDArray[np.float32]:
    """
    Collapse a (frames, channels) hardware block to a 1-D mono signal.

    Multi-channel input is averaged; 1-D input is returned unchanged.
    """
    if block.ndim == 1:
        return block
    if block.shape[1] == 1:
        return block[:, 0]
    return block.mean(axis=1, dtype=np.float32)


def float32_to_pcm16le(samples: NDArray[np.float32]) -> bytes:
    """
    Convert float32 samples in [-1.0, 1.0] to PCM16 little-endian bytes.

    Out-of-range samples are clipped. No resampling.
    """
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> NDArray[np.float32]:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    A trailing odd byte (truncated sample) is dropped.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / 32768.0

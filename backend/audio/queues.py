"""
Bounded capture buffer queue.

Sits between the hardware callback hand-off and the sink pump:
- FIFO, capture order preserved
- Explicit overflow signal (never silent): enqueue() returns False
- Deterministic, synchronous; owned by the event loop thread
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.formats import CaptureBuffer


@dataclass
class DropCounters:
    """Drop counters for observability."""
    overflow: int = 0


class CaptureBufferQueue:
    """
    Bounded FIFO queue for CaptureBuffer objects.

    Overflow rule: the NEW buffer is refused and counted. The caller treats a
    refusal as host back-pressure and surfaces it.
    """

    def __init__(self, *, max_buffers: int, buffer_duration_s: float) -> None:
        if max_buffers <= 0:
            raise ValueError("max_buffers must be > 0")
        if buffer_duration_s <= 0:
            raise ValueError("buffer_duration_s must be > 0")

        self._max_buffers = max_buffers
        self._buffer_duration_s = buffer_duration_s
        self._buffers: Deque[CaptureBuffer] = deque()
        self._last_seq: int = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, buf: CaptureBuffer) -> bool:
        """
        Enqueue a buffer.

        Returns:
            True if enqueued
            False if refused (queue full)

        Raises:
            ValueError if buf is out of capture order.
        """
        if buf.sequence_num <= self._last_seq:
            raise ValueError(
                f"out-of-order buffer: seq {buf.sequence_num} after {self._last_seq}"
            )

        if len(self._buffers) >= self._max_buffers:
            self.drops.overflow += 1
            return False

        self._buffers.append(buf)
        self._last_seq = buf.sequence_num
        return True

    def dequeue(self) -> Optional[CaptureBuffer]:
        """Oldest buffer, or None if empty."""
        if not self._buffers:
            return None
        return self._buffers.popleft()

    def peek(self) -> Optional[CaptureBuffer]:
        return self._buffers[0] if self._buffers else None

    def clear(self) -> None:
        """
        Drop all queued buffers without counting them as drops.

        Used during teardown.
        """
        self._buffers.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._buffers)

    def is_empty(self) -> bool:
        return not self._buffers

    def depth_seconds(self) -> float:
        """Queued audio in seconds: num_buffers × buffer duration."""
        return len(self._buffers) * self._buffer_duration_s

    def snapshot(self) -> dict[str, float | int]:
        """Lightweight snapshot for logging."""
        return {
            "buffers": len(self._buffers),
            "depth_s": self.depth_seconds(),
            "dropped_overflow": self.drops.overflow,
            "last_seq": self._last_seq,
        }

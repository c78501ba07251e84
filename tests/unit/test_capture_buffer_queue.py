# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from audio.formats import CaptureBuffer
from audio.queues import CaptureBufferQueue


def _buf(seq: int) -> CaptureBuffer:
    return CaptureBuffer(
        sequence_num=seq,
        pcm_bytes=b"\x00\x00" * 1024,
        ts_ms=seq,
        session_id=1,
    )


def test_depth_seconds_is_buffers_times_duration():
    q = CaptureBufferQueue(max_buffers=10, buffer_duration_s=0.064)

    assert q.depth_seconds() == 0.0

    q.enqueue(_buf(1))
    q.enqueue(_buf(2))
    q.enqueue(_buf(3))

    assert len(q) == 3
    assert q.depth_seconds() == pytest.approx(0.192)


def test_fifo_order_is_preserved():
    q = CaptureBufferQueue(max_buffers=4, buffer_duration_s=0.064)
    for seq in (1, 2, 3):
        q.enqueue(_buf(seq))

    assert [q.dequeue().sequence_num for _ in range(3)] == [1, 2, 3]  # type: ignore[union-attr]
    assert q.dequeue() is None


def test_overflow_refuses_new_buffer_and_counts_it():
    q = CaptureBufferQueue(max_buffers=2, buffer_duration_s=0.064)

    assert q.enqueue(_buf(1)) is True
    assert q.enqueue(_buf(2)) is True
    assert q.enqueue(_buf(3)) is False

    assert q.drops.overflow == 1
    assert q.peek() is not None and q.peek().sequence_num == 1  # type: ignore[union-attr]
    assert q.snapshot()["dropped_overflow"] == 1


def test_out_of_order_buffer_is_rejected():
    q = CaptureBufferQueue(max_buffers=4, buffer_duration_s=0.064)
    q.enqueue(_buf(2))

    with pytest.raises(ValueError):
        q.enqueue(_buf(2))


def test_clear_does_not_count_drops():
    q = CaptureBufferQueue(max_buffers=4, buffer_duration_s=0.064)
    q.enqueue(_buf(1))
    q.enqueue(_buf(2))

    q.clear()

    assert q.is_empty()
    assert q.drops.overflow == 0


@pytest.mark.parametrize("max_buffers,duration", [(0, 0.064), (4, 0.0)])
def test_invalid_bounds_are_rejected(max_buffers: int, duration: float):
    with pytest.raises(ValueError):
        CaptureBufferQueue(max_buffers=max_buffers, buffer_duration_s=duration)

# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np

from audio.pcm import downmix_to_mono, float32_to_pcm16le, pcm16le_to_float32


def test_full_scale_samples_map_to_int16_extremes():
    samples = np.array([0.0, 1.0, -1.0], dtype=np.float32)

    pcm = float32_to_pcm16le(samples)

    assert np.frombuffer(pcm, dtype="<i2").tolist() == [0, 32767, -32767]


def test_out_of_range_samples_are_clipped():
    samples = np.array([2.5, -3.0], dtype=np.float32)

    pcm = float32_to_pcm16le(samples)

    assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32767]


def test_stereo_block_is_averaged_to_mono():
    block = np.array([[0.5, -0.5], [1.0, 0.0]], dtype=np.float32)

    mono = downmix_to_mono(block)

    assert mono.shape == (2,)
    assert mono.tolist() == [0.0, 0.5]


def test_single_channel_block_is_flattened():
    block = np.zeros((1024, 1), dtype=np.float32)

    assert downmix_to_mono(block).shape == (1024,)


def test_pcm16_decode_drops_trailing_odd_byte():
    decoded = pcm16le_to_float32(b"\x00\x40\x01")

    assert decoded.tolist() == [0.5]

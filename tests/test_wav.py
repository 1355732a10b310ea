"""Tests for the 16-bit PCM WAVE container."""

import io
import struct
import wave

import numpy as np
import pytest

from blindmark.watermark.errors import InvalidInput
from blindmark.watermark.wav import decode_wav, encode_wav


def _pcm_bytes(values, channels: int = 1, rate: int = 8000, sampwidth: int = 2) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sampwidth)
        wf.setframerate(rate)
        wf.writeframes(np.asarray(values, dtype="<i2" if sampwidth == 2 else np.uint8).tobytes())
    return buf.getvalue()


class TestEncode:
    def test_header(self):
        data = encode_wav(np.zeros((10, 2)), 22050)
        assert data[:4] == b"RIFF"
        assert data[8:12] == b"WAVE"
        assert data[12:16] == b"fmt "
        assert data[36:40] == b"data"
        riff_size, = struct.unpack("<I", data[4:8])
        fmt, channels, rate, byte_rate, align, bits = struct.unpack("<HHIIHH", data[20:36])
        data_len, = struct.unpack("<I", data[40:44])
        assert (fmt, channels, rate, byte_rate, align, bits) == (1, 2, 22050, 22050 * 4, 4, 16)
        assert data_len == 40
        assert riff_size == 36 + data_len
        assert len(data) == 44 + data_len

    def test_scaling_and_clipping(self):
        data = encode_wav(np.array([1.0, -1.0, 0.0, 0.5, -0.5, 2.0, -3.0]), 8000)
        pcm = np.frombuffer(data[44:], dtype="<i2").tolist()
        assert pcm == [32767, -32768, 0, 16383, -16384, 32767, -32768]

    def test_interleaved(self):
        frames = np.array([[0.5, -0.5], [0.25, -0.25]])
        pcm = np.frombuffer(encode_wav(frames, 8000)[44:], dtype="<i2").tolist()
        assert pcm == [16383, -16384, 8191, -8192]

    def test_rejects_empty(self):
        with pytest.raises(InvalidInput):
            encode_wav(np.zeros(0), 8000)

    def test_rejects_bad_rate(self):
        with pytest.raises(InvalidInput):
            encode_wav(np.zeros(4), 0)


class TestDecode:
    def test_every_level_survives_round_trip(self):
        original = _pcm_bytes(np.arange(-32768, 32768), rate=44100)
        samples, rate = decode_wav(original)
        assert rate == 44100
        assert samples.shape == (65536, 1)
        assert samples.dtype == np.float32
        assert encode_wav(samples, rate) == original

    def test_stereo_shape(self):
        samples, _ = decode_wav(_pcm_bytes([100, -100, 200, -200], channels=2))
        assert samples.shape == (2, 2)
        assert samples[0, 0] > 0 > samples[0, 1]

    def test_rejects_garbage(self):
        with pytest.raises(InvalidInput):
            decode_wav(b"definitely not a wave file")

    def test_rejects_truncated(self):
        with pytest.raises(InvalidInput):
            decode_wav(b"RIFF")

    def test_rejects_eight_bit(self):
        with pytest.raises(InvalidInput):
            decode_wav(_pcm_bytes([0, 128, 255], sampwidth=1))

    def test_rejects_no_samples(self):
        with pytest.raises(InvalidInput):
            decode_wav(_pcm_bytes([]))

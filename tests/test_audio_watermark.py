"""Tests for the multi-algorithm audio codec (LSB, AM, echo, spread spectrum)."""

import numpy as np
import pytest

from blindmark.watermark.audio import (
    PAYLOAD_LENGTH,
    embed_am,
    embed_audio_watermark,
    embed_echo,
    embed_lsb,
    embed_spread_spectrum,
    extract_am,
    extract_audio_watermark,
    extract_echo,
    extract_lsb,
    extract_spread_spectrum,
    generate_binary_watermark,
    generate_key,
    spreading_code,
)
from blindmark.watermark.errors import InvalidInput

RATE = 44100


# ---------------------------------------------------------------------------
# Helpers to create synthetic test audio
# ---------------------------------------------------------------------------

def _noise(n: int, sigma: float = 0.1, seed: int = 42) -> np.ndarray:
    rng = np.random.RandomState(seed)
    return (rng.normal(0, sigma, n)).astype(np.float32)


def _bits(seed: int = 7) -> np.ndarray:
    return np.random.RandomState(seed).randint(0, 2, PAYLOAD_LENGTH).astype(np.uint8)


# ---------------------------------------------------------------------------
# Key & sequences
# ---------------------------------------------------------------------------

class TestAudioKey:
    def test_passphrase_kept(self):
        key = generate_key("correct horse")
        assert key.seed == "correct horse"
        assert key.strength == 0.08
        assert key.delay == 100
        assert key.spread_factor == 2.0

    def test_rejects_bad_parameters(self):
        with pytest.raises(InvalidInput):
            generate_key("x", strength=0)
        with pytest.raises(InvalidInput):
            generate_key("x", delay=0)

    def test_payload_deterministic(self):
        key = generate_key("correct horse")
        a = generate_binary_watermark(key, 64)
        assert np.array_equal(a, generate_binary_watermark(key, 64))
        assert set(np.unique(a)) <= {0, 1}

    def test_payload_depends_on_passphrase(self):
        a = generate_binary_watermark(generate_key("correct horse"), 64)
        b = generate_binary_watermark(generate_key("battery staple"), 64)
        assert not np.array_equal(a, b)

    def test_spreading_code_range(self):
        code = spreading_code(generate_key("correct horse"), 4096)
        assert code.min() >= -1.0 and code.max() < 1.0
        assert abs(code.mean()) < 0.1


# ---------------------------------------------------------------------------
# Individual algorithms
# ---------------------------------------------------------------------------

class TestAlgorithms:
    def test_lsb(self):
        rng = np.random.RandomState(1)
        samples = rng.randint(-20000, 20000, 64 * 32) / 32768.0
        bits = _bits()
        marked = embed_lsb(samples, bits, strength=1.0)
        assert np.array_equal(extract_lsb(marked, 64), bits)

    def test_am(self):
        samples = np.where(np.arange(64 * 100) % 2 == 0, 0.1, -0.1)
        bits = _bits()
        marked = embed_am(samples, bits, strength=0.05)
        assert np.array_equal(extract_am(marked, 64), bits)

    def test_am_tail_passes_through(self):
        samples = np.full(64 * 10 + 7, 0.2)
        marked = embed_am(samples, _bits(), strength=0.05)
        assert np.allclose(marked[-7:], 0.2)

    def test_echo(self):
        samples = _noise(64 * 8192)
        bits = _bits()
        marked = embed_echo(samples, bits, delay=100, strength=0.3)
        assert np.array_equal(extract_echo(marked, 64, delay=100), bits)

    def test_spread_spectrum(self):
        key = generate_key("correct horse")
        samples = _noise(64 * 2048)
        bits = _bits()
        marked = embed_spread_spectrum(samples, bits, key)
        assert np.array_equal(extract_spread_spectrum(marked, 64, key), bits)

    def test_embed_returns_float32_copy(self):
        samples = _noise(64 * 100)
        before = samples.copy()
        out = embed_am(samples, _bits())
        assert out.dtype == np.float32
        assert np.array_equal(samples, before)

    def test_too_short(self):
        with pytest.raises(InvalidInput):
            embed_lsb(np.zeros(10), _bits())


# ---------------------------------------------------------------------------
# Fused embed / extract
# ---------------------------------------------------------------------------

class TestAudioWatermark:
    def test_embed_extract_roundtrip(self):
        key = generate_key("correct horse")
        samples = _noise(64 * 8192, sigma=0.116)
        marked = embed_audio_watermark(samples, RATE, 1, key)

        result = extract_audio_watermark(marked, key)
        assert result.is_watermarked
        assert result.confidence > 0.65
        assert result.confidence == result.correlation
        assert result.ber == pytest.approx(1 - result.correlation)
        assert result.algorithm_scores.spread_spectrum == 1.0
        assert result.algorithm_scores.echo >= 0.9
        assert result.algorithm_scores.am > 0.8

    def test_wrong_key(self):
        samples = _noise(64 * 8192, sigma=0.116)
        marked = embed_audio_watermark(samples, RATE, 1, generate_key("correct horse"))
        result = extract_audio_watermark(marked, generate_key("battery staple"))
        assert not result.is_watermarked

    def test_shape_preserved(self):
        key = generate_key("correct horse")
        samples = _noise(64 * 256)
        out = embed_audio_watermark(samples, RATE, 1, key)
        assert out.shape == samples.shape
        assert out.dtype == np.float32

    def test_stereo_second_channel_untouched(self):
        key = generate_key("correct horse")
        left = _noise(64 * 256, seed=1)
        right = _noise(64 * 256, seed=2)
        stereo = np.stack([left, right], axis=1)
        out = embed_audio_watermark(stereo, RATE, 2, key)
        assert out.shape == stereo.shape
        assert np.array_equal(out[:, 1], right)
        assert not np.array_equal(out[:, 0], left)

    def test_unsupported_channels(self):
        with pytest.raises(InvalidInput):
            embed_audio_watermark(np.zeros((64 * 10, 3)), RATE, 3, generate_key("x"))

    def test_channel_mismatch(self):
        with pytest.raises(InvalidInput):
            embed_audio_watermark(np.zeros(64 * 10), RATE, 2, generate_key("x"))

    def test_empty(self):
        with pytest.raises(InvalidInput):
            embed_audio_watermark(np.zeros(0), RATE, 1, generate_key("x"))
        with pytest.raises(InvalidInput):
            extract_audio_watermark(np.zeros(0), generate_key("x"))

    def test_silence_snr_is_null_in_dict(self):
        result = extract_audio_watermark(np.zeros(64 * 100), generate_key("x"))
        assert result.snr == float("-inf")
        d = result.to_dict()
        assert d["snr"] is None
        assert set(d["algorithm_scores"]) == {"lsb", "am", "echo", "spread_spectrum"}

"""
Multi-algorithm blind audio watermarking.

Four independent techniques carry the same 64-bit payload:
  • LSB:             nudge the 16-bit LSB of every sample in a bit's interval.
  • Amplitude (AM):  scale each block by (1 + s) for a 1, (1 - s) for a 0.
  • Echo hiding:     add an attenuated echo at ``delay`` (1) or ``2*delay`` (0).
  • Spread spectrum: add a key-derived chip sequence in [-1, 1), signed by the bit.

Embedding chains them (LSB -> AM -> echo -> spread spectrum), each stage
feeding the next.  Extraction runs the four readers independently on the same
signal and averages their agreement with the payload regenerated from the key.

Only channel 0 carries the watermark; further channels are copied through.

Dependencies: numpy, pydub (for non-WAV input).
"""

import os
import tempfile
from dataclasses import dataclass, asdict
from typing import Tuple

import numpy as np

from blindmark.watermark.errors import InvalidInput
from blindmark.watermark.wav import decode_wav, encode_wav

# ---- tuning knobs --------------------------------------------------------
DEFAULT_STRENGTH = 0.08
DEFAULT_DELAY = 100            # samples
DEFAULT_SPREAD_FACTOR = 2.0    # carried on the key, not used by the math
PAYLOAD_LENGTH = 64
DETECTION_THRESHOLD = 0.65
AM_REFERENCE_AMPLITUDE = 0.1   # fixed, not the block's pre-embed mean
SUPPORTED_CHANNELS = (1, 2)
_LSB_SCALE = 32768


@dataclass(frozen=True)
class AudioWatermarkKey:
    seed: str
    strength: float = DEFAULT_STRENGTH
    delay: int = DEFAULT_DELAY
    spread_factor: float = DEFAULT_SPREAD_FACTOR


@dataclass
class AlgorithmScores:
    lsb: float
    am: float
    echo: float
    spread_spectrum: float


@dataclass
class AudioVerificationResult:
    is_watermarked: bool
    confidence: float
    ber: float
    correlation: float
    snr: float
    algorithm_scores: AlgorithmScores

    def to_dict(self) -> dict:
        d = asdict(self)
        if not np.isfinite(d["snr"]):
            d["snr"] = None   # silence: keep the JSON valid
        return d


# ---- key & sequences ------------------------------------------------------

def _utf16_units(text: str) -> np.ndarray:
    return np.frombuffer(text.encode("utf-16-le"), dtype="<u2")


def generate_key(
    passphrase: str,
    strength: float = DEFAULT_STRENGTH,
    delay: int = DEFAULT_DELAY,
    spread_factor: float = DEFAULT_SPREAD_FACTOR,
) -> AudioWatermarkKey:
    """The pass-phrase is kept verbatim; each algorithm folds it on its own."""
    if strength <= 0:
        raise InvalidInput(f"strength must be positive, got {strength}")
    if int(delay) < 1:
        raise InvalidInput(f"delay must be at least one sample, got {delay}")
    return AudioWatermarkKey(
        seed=passphrase,
        strength=float(strength),
        delay=int(delay),
        spread_factor=float(spread_factor),
    )


def generate_binary_watermark(key: AudioWatermarkKey, length: int) -> np.ndarray:
    if length < 0:
        raise InvalidInput(f"length must be >= 0, got {length}")
    seed = sum(int(unit) * (i + 1) for i, unit in enumerate(_utf16_units(key.seed)))
    bits = np.empty(length, dtype=np.uint8)
    for i in range(length):
        seed = (seed * 9301 + 49297) % 233280
        bits[i] = 1 if seed / 233280 > 0.5 else 0
    return bits


def spreading_code(key: AudioWatermarkKey, length: int) -> np.ndarray:
    """Chip values in [-1, 1) from an LCG seeded by the code-unit sum."""
    seed = int(_utf16_units(key.seed).astype(np.int64).sum())
    code = np.empty(length, dtype=np.float64)
    for i in range(length):
        seed = (seed * 1103515245 + 12345) % 2147483648
        code[i] = seed / 2147483648 * 2 - 1
    return code


# ---- helpers --------------------------------------------------------------

def _segment_length(n_samples: int, n_bits: int) -> int:
    """Samples per payload bit; the trailing remainder carries nothing."""
    if n_bits <= 0:
        raise InvalidInput("Payload must hold at least one bit")
    if n_samples < n_bits:
        raise InvalidInput(f"{n_samples} samples cannot carry {n_bits} bits")
    return n_samples // n_bits


def _mono(samples) -> np.ndarray:
    arr = np.asarray(samples, dtype=np.float32)
    if arr.ndim == 2:
        arr = arr[:, 0]
    if arr.ndim != 1:
        raise InvalidInput(f"Expected (n,) or (n, channels) samples, got shape {arr.shape}")
    if arr.size == 0:
        raise InvalidInput("Empty sample buffer")
    return arr


def _similarity(expected: np.ndarray, extracted: np.ndarray) -> Tuple[float, float]:
    """(correlation, bit error rate) over the shorter sequence."""
    n = min(len(expected), len(extracted))
    if n == 0:
        return 0.0, 1.0
    matches = int(np.count_nonzero(expected[:n] == extracted[:n]))
    return matches / n, (n - matches) / n


def _estimate_snr(samples: np.ndarray, noise_level: float) -> float:
    signal_power = float(np.mean(samples.astype(np.float64) ** 2))
    if signal_power == 0:
        return float("-inf")
    return float(10 * np.log10(signal_power / noise_level ** 2))


def snr(original: np.ndarray, watermarked: np.ndarray) -> float:
    """Signal-to-Noise Ratio in dB of the embedding itself."""
    noise = watermarked.astype(np.float64) - original.astype(np.float64)
    sig_power = np.mean(original.astype(np.float64) ** 2)
    noise_power = np.mean(noise ** 2)
    if noise_power == 0:
        return float("inf")
    return float(10 * np.log10(sig_power / noise_power))


# ---- 1. LSB ---------------------------------------------------------------

def embed_lsb(samples, watermark: np.ndarray, strength: float = 0.01) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    watermark = np.asarray(watermark, dtype=np.uint8)
    interval = _segment_length(len(x), len(watermark))
    out = x.copy()

    bit_index = np.arange(len(x)) // interval
    mask = bit_index < len(watermark)
    sample16 = np.floor(x[mask] * _LSB_SCALE + 0.5).astype(np.int64)
    modified = (sample16 & ~1) | watermark[bit_index[mask]].astype(np.int64)
    out[mask] = x[mask] + (modified - sample16) / _LSB_SCALE * strength
    return out.astype(np.float32)


def extract_lsb(samples, length: int) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    interval = _segment_length(len(x), length)
    picks = x[np.arange(length) * interval]
    sample16 = np.floor(picks * _LSB_SCALE + 0.5).astype(np.int64)
    return (sample16 & 1).astype(np.uint8)


# ---- 2. Amplitude modulation ----------------------------------------------

def embed_am(samples, watermark: np.ndarray, strength: float = 0.05) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    watermark = np.asarray(watermark, dtype=np.uint8)
    block = _segment_length(len(x), len(watermark))
    out = x.copy()
    factors = np.where(watermark == 1, 1 + strength, 1 - strength)
    out[: len(watermark) * block] *= np.repeat(factors, block)
    return out.astype(np.float32)


def extract_am(samples, length: int, reference: float = AM_REFERENCE_AMPLITUDE) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    block = _segment_length(len(x), length)
    means = np.abs(x[: length * block]).reshape(length, block).mean(axis=1)
    return (means > reference).astype(np.uint8)


# ---- 3. Echo hiding -------------------------------------------------------

def embed_echo(samples, watermark: np.ndarray, delay: int = DEFAULT_DELAY, strength: float = 0.3) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    watermark = np.asarray(watermark, dtype=np.uint8)
    block = _segment_length(len(x), len(watermark))
    out = x.copy()

    delays = np.repeat(np.where(watermark == 1, delay, 2 * delay), block)
    source = np.arange(len(delays))
    target = source + delays
    keep = target < len(x)
    # echoes of neighbouring blocks can land on the same sample
    np.add.at(out, target[keep], x[source[keep]] * strength)
    return out.astype(np.float32)


def extract_echo(samples, length: int, delay: int = DEFAULT_DELAY) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    n = len(x)
    block = _segment_length(n, length)
    bits = np.zeros(length, dtype=np.uint8)

    for i in range(length):
        start = i * block
        end = start + block
        stop1 = max(start, min(end, n - delay))
        stop2 = max(start, min(end, n - 2 * delay))
        corr1 = float(np.dot(x[start:stop1], x[start + delay:stop1 + delay]))
        corr2 = float(np.dot(x[start:stop2], x[start + 2 * delay:stop2 + 2 * delay]))
        count = stop1 - start
        if count > 0:
            corr1 /= count
            corr2 /= count
        bits[i] = 1 if corr1 > corr2 else 0
    return bits


# ---- 4. Spread spectrum ---------------------------------------------------

def embed_spread_spectrum(samples, watermark: np.ndarray, key: AudioWatermarkKey) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    watermark = np.asarray(watermark, dtype=np.uint8)
    chip_rate = _segment_length(len(x), len(watermark))
    code = spreading_code(key, chip_rate)
    out = x.copy()

    signs = np.where(watermark == 1, 1.0, -1.0)
    span = len(watermark) * chip_rate
    out[:span] += np.repeat(signs, chip_rate) * np.tile(code, len(watermark)) * key.strength
    return out.astype(np.float32)


def extract_spread_spectrum(samples, length: int, key: AudioWatermarkKey) -> np.ndarray:
    x = np.asarray(samples, dtype=np.float64)
    chip_rate = _segment_length(len(x), length)
    code = spreading_code(key, chip_rate)
    correlation = x[: length * chip_rate].reshape(length, chip_rate) @ code
    return (correlation > 0).astype(np.uint8)


# ---- public API -----------------------------------------------------------

def embed_audio_watermark(samples, sample_rate: int, channels: int, key: AudioWatermarkKey) -> np.ndarray:
    """Watermark channel 0 of *samples*; the result keeps the input's shape."""
    if channels not in SUPPORTED_CHANNELS:
        raise InvalidInput(f"Unsupported channel count: {channels}")
    if sample_rate <= 0:
        raise InvalidInput(f"sample_rate must be positive, got {sample_rate}")

    data = np.asarray(samples, dtype=np.float32)
    if data.ndim not in (1, 2):
        raise InvalidInput(f"Expected (n,) or (n, channels) samples, got shape {data.shape}")
    if data.size == 0:
        raise InvalidInput("Empty sample buffer")
    if data.ndim == 1 and channels != 1:
        raise InvalidInput(f"1-D buffer given for {channels} channels")
    if data.ndim == 2 and data.shape[1] != channels:
        raise InvalidInput(f"Buffer has {data.shape[1]} channels, expected {channels}")

    mono = _mono(data)
    watermark = generate_binary_watermark(key, min(PAYLOAD_LENGTH, len(mono)))

    marked = embed_lsb(mono, watermark, key.strength * 0.5)
    marked = embed_am(marked, watermark, key.strength)
    marked = embed_echo(marked, watermark, key.delay, key.strength)
    marked = embed_spread_spectrum(marked, watermark, key)

    if data.ndim == 1:
        return marked
    out = data.copy()
    out[:, 0] = marked
    return out


def extract_audio_watermark(samples, key: AudioWatermarkKey) -> AudioVerificationResult:
    """Fusion detector: average agreement of the four readers with the payload."""
    mono = _mono(samples)
    length = min(PAYLOAD_LENGTH, len(mono))
    expected = generate_binary_watermark(key, length)

    lsb = _similarity(expected, extract_lsb(mono, length))
    am = _similarity(expected, extract_am(mono, length))
    echo = _similarity(expected, extract_echo(mono, length, key.delay))
    ss = _similarity(expected, extract_spread_spectrum(mono, length, key))

    correlation = (lsb[0] + am[0] + echo[0] + ss[0]) / 4
    ber = (lsb[1] + am[1] + echo[1] + ss[1]) / 4

    return AudioVerificationResult(
        is_watermarked=correlation > DETECTION_THRESHOLD,
        confidence=correlation,
        ber=ber,
        correlation=correlation,
        snr=_estimate_snr(mono, key.strength),
        algorithm_scores=AlgorithmScores(
            lsb=lsb[0], am=am[0], echo=echo[0], spread_spectrum=ss[0],
        ),
    )


# ---- file I/O -------------------------------------------------------------

def _to_wav(src: str) -> Tuple[str, bool]:
    """If *src* is not .wav, convert via pydub. Return (wav_path, was_converted)."""
    if src.lower().endswith(".wav"):
        return src, False
    from pydub import AudioSegment
    audio = AudioSegment.from_file(src).set_sample_width(2)
    fd, wav_path = tempfile.mkstemp(suffix=".wav")
    os.close(fd)
    audio.export(wav_path, format="wav")
    return wav_path, True


def read_audio(path: str) -> Tuple[np.ndarray, int]:
    """Read any supported audio file -> (float32 samples (n, channels), sample_rate)."""
    wav_path, converted = _to_wav(str(path))
    try:
        with open(wav_path, "rb") as fh:
            return decode_wav(fh.read())
    finally:
        if converted:
            os.unlink(wav_path)


def write_audio(path: str, samples, sample_rate: int) -> None:
    with open(path, "wb") as fh:
        fh.write(encode_wav(samples, sample_rate))

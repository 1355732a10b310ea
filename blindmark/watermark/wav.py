"""
Canonical 16-bit PCM WAVE container.

Layout (44-byte header, all fields little-endian):
    0  "RIFF"   4  36 + data_len   8  "WAVE"
   12  "fmt "  16  16             20  1 (PCM)    22  channels
   24  sample_rate                28  sample_rate * block_align
   32  block_align = channels * 2 34  16 (bits)
   36  "data"  40  data_len       44  interleaved int16 samples

Encoding clips to [-1, 1], scales negatives by 0x8000 and the rest by 0x7FFF,
and truncates toward zero.  Decoding maps each integer to the middle of the
interval that encodes to it, so decode -> encode reproduces the same bytes.
"""

import io
import struct
import wave
from typing import Tuple

import numpy as np

from blindmark.watermark.errors import InvalidInput

_NEG_SCALE = 0x8000
_POS_SCALE = 0x7FFF


def _as_frames(samples) -> np.ndarray:
    arr = np.asarray(samples, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2 or arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidInput(f"Expected (n,) or (n, channels) samples, got shape {arr.shape}")
    return arr


def encode_wav(samples, sample_rate: int) -> bytes:
    """Serialise float samples (mono ``(n,)`` or ``(n, channels)``) to WAVE bytes."""
    frames = _as_frames(samples)
    if sample_rate <= 0:
        raise InvalidInput(f"sample_rate must be positive, got {sample_rate}")

    clipped = np.clip(frames, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * _NEG_SCALE, clipped * _POS_SCALE)
    pcm = np.trunc(scaled).astype(np.int16)

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(frames.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm.tobytes())   # row-major == interleaved
    return buf.getvalue()


def decode_wav(data: bytes) -> Tuple[np.ndarray, int]:
    """WAVE bytes -> (float32 samples of shape (n, channels), sample_rate)."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError, struct.error) as exc:
        raise InvalidInput(f"Corrupt WAVE container: {exc}") from exc

    if sampwidth != 2:
        raise InvalidInput(f"Only 16-bit PCM WAVE is supported (got {sampwidth * 8}-bit)")
    if not raw:
        raise InvalidInput("WAVE container holds no samples")

    pcm = np.frombuffer(raw, dtype=np.int16).astype(np.float64)
    pcm = pcm[: len(pcm) - len(pcm) % n_channels].reshape(-1, n_channels)
    samples = np.where(pcm < 0, (pcm - 0.5) / _NEG_SCALE, (pcm + 0.5) / _POS_SCALE)
    return samples.astype(np.float32), rate

"""
Blind image watermarking (block-DCT + QIM).

Technique:
  • Sample one luma value per 8x8 block: the mean of the three colour
    channels at the block's top-left (anchor) pixel.  This gives a small
    "block matrix" of shape (ceil(H/8), ceil(W/8)).
  • Apply an orthonormal 2-D DCT to the whole block matrix.
  • Embed payload bits by QIM (quantization index modulation) into the
    mid-frequency window: rows/cols 1..7, row-major, DC term skipped.
  • Inverse DCT; the per-block luma change, scaled by ``strength``, is added
    to R, G and B of every pixel in the block.

On extraction:
  • Rebuild the block matrix, DCT, read bits back by nearest QIM centroid and
    compare them with the payload regenerated from the key.

Pixel arrays are (H, W, C) with C = 3 or 4.  Channels 0..2 are colour (the
order does not matter: luma is their plain mean and every colour channel gets
the same delta), channel 3 is alpha and is never touched.

Dependencies: numpy, cv2 (file I/O only).
"""

import math
from dataclasses import dataclass, asdict
from pathlib import Path

import numpy as np
import cv2

from blindmark.watermark.errors import InvalidInput

# ---- tuning knobs --------------------------------------------------------
DEFAULT_STRENGTH = 0.35      # fraction of the QIM move written to the pixels
DEFAULT_ALPHA = 8.0          # QIM quantization step
PAYLOAD_LENGTH = 64
DETECTION_THRESHOLD = 0.7
_BLOCK_SIZE = 8
_QIM_WINDOW = 8              # coefficients [1, 8) in each dimension
_SEED_MODULUS = 100000
_SIXTEEN_BIT_FORMATS = {".png", ".tif", ".tiff"}


@dataclass(frozen=True)
class ImageWatermarkKey:
    seed: int
    strength: float = DEFAULT_STRENGTH
    alpha: float = DEFAULT_ALPHA


@dataclass
class ImageVerificationResult:
    is_watermarked: bool
    confidence: float

    def to_dict(self) -> dict:
        return asdict(self)


# ---- key & payload --------------------------------------------------------

def _utf16_units(text: str) -> np.ndarray:
    return np.frombuffer(text.encode("utf-16-le"), dtype="<u2")


def _string_hash(text: str) -> int:
    """32-bit rolling hash ``h = h*31 + unit`` wrapped to a signed int."""
    h = 0
    for unit in _utf16_units(text):
        h = (h * 31 + int(unit)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def generate_key(
    passphrase: str,
    strength: float = DEFAULT_STRENGTH,
    alpha: float = DEFAULT_ALPHA,
) -> ImageWatermarkKey:
    """Derive the image key for *passphrase*.  Same pass-phrase, same key."""
    if not 0 < strength <= 1:
        raise InvalidInput(f"strength must be in (0, 1], got {strength}")
    if alpha <= 0:
        raise InvalidInput(f"alpha must be positive, got {alpha}")
    seed = abs(_string_hash(passphrase)) % _SEED_MODULUS
    return ImageWatermarkKey(seed=seed, strength=float(strength), alpha=float(alpha))


def generate_binary_watermark(key: ImageWatermarkKey, length: int) -> np.ndarray:
    """Pseudo-random payload bits, a pure function of ``(key.seed, length)``."""
    if length < 0:
        raise InvalidInput(f"length must be >= 0, got {length}")
    bits = np.empty(length, dtype=np.uint8)
    seed = key.seed
    for i in range(length):
        seed = (seed * 9301 + 49297) % 233280
        bits[i] = seed % 2
    return bits


def bit_agreement(expected: np.ndarray, observed: np.ndarray) -> float:
    """Fraction of equal bits over the shorter of the two sequences."""
    n = min(len(expected), len(observed))
    if n == 0:
        return 0.0
    return float(np.count_nonzero(expected[:n] == observed[:n])) / n


# ---- transforms -----------------------------------------------------------

def _dct_basis(n: int) -> np.ndarray:
    """Row u holds c(u) * cos(pi * u * (2i + 1) / 2n); c(0) = 1/sqrt(2)."""
    u = np.arange(n, dtype=np.float64)[:, None]
    i = np.arange(n, dtype=np.float64)[None, :]
    basis = np.cos(np.pi * u * (2 * i + 1) / (2 * n))
    basis[0, :] /= math.sqrt(2)
    return basis


def _as_matrix(matrix) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] == 0 or m.shape[1] == 0:
        raise InvalidInput(f"DCT needs a non-empty 2-D matrix, got shape {m.shape}")
    return m


def dct2(matrix) -> np.ndarray:
    """Orthonormal 2-D DCT-II over the whole matrix (separable form)."""
    m = _as_matrix(matrix)
    n, k = m.shape
    return (2.0 / math.sqrt(n * k)) * (_dct_basis(n) @ m @ _dct_basis(k).T)


def idct2(coeffs) -> np.ndarray:
    """Inverse of :func:`dct2` (DCT-III with the same normalisation)."""
    c = _as_matrix(coeffs)
    n, k = c.shape
    return (2.0 / math.sqrt(n * k)) * (_dct_basis(n).T @ c @ _dct_basis(k))


# ---- QIM ------------------------------------------------------------------

def _mid_band_positions(shape) -> list:
    rows, cols = shape
    return [
        (i, j)
        for i in range(1, min(_QIM_WINDOW, rows))
        for j in range(1, min(_QIM_WINDOW, cols))
    ]


def payload_capacity(height: int, width: int) -> int:
    """Number of payload bits an image of this size actually carries."""
    rows = -(-height // _BLOCK_SIZE)
    cols = -(-width // _BLOCK_SIZE)
    return min(PAYLOAD_LENGTH, rows * cols, len(_mid_band_positions((rows, cols))))


def qim_embed(coeffs, bits, alpha: float) -> np.ndarray:
    """Steer each mid-band coefficient to ``q + alpha/4`` (1) or ``q - alpha/4`` (0)."""
    out = np.array(coeffs, dtype=np.float64, copy=True)
    offset = alpha / 4.0
    for (i, j), bit in zip(_mid_band_positions(out.shape), bits):
        quantized = math.floor(out[i, j] / alpha + 0.5) * alpha
        out[i, j] = quantized + offset if bit == 1 else quantized - offset
    return out


def qim_extract(coeffs, length: int, alpha: float) -> np.ndarray:
    """Read bits back: 1 if the residue sits nearer alpha/4 than 3*alpha/4."""
    c = np.asarray(coeffs, dtype=np.float64)
    bits = []
    for i, j in _mid_band_positions(c.shape)[:length]:
        mod = math.fmod(math.fmod(c[i, j], alpha) + alpha, alpha)
        dist_one = abs(mod - alpha / 4.0)
        dist_zero = abs(mod - 3.0 * alpha / 4.0)
        bits.append(1 if dist_one <= dist_zero else 0)
    return np.array(bits, dtype=np.uint8)


# ---- pixels ---------------------------------------------------------------

def _as_pixels(pixels) -> np.ndarray:
    arr = np.asarray(pixels)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise InvalidInput(f"Expected an (H, W, 3|4) pixel array, got shape {arr.shape}")
    if arr.size == 0:
        raise InvalidInput("Empty pixel buffer")
    return arr.astype(np.float64)


def pixels_from_buffer(buffer, width: int, height: int) -> np.ndarray:
    """View a flat RGBA buffer (bytes or sequence) as an (H, W, 4) array."""
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(buffer, dtype=np.uint8)
    else:
        flat = np.asarray(buffer).ravel()
    if width <= 0 or height <= 0 or flat.size == 0:
        raise InvalidInput("Empty pixel buffer")
    if flat.size != width * height * 4:
        raise InvalidInput(
            f"Buffer holds {flat.size} values, expected {width}x{height}x4"
        )
    return flat.reshape(height, width, 4)


def pixels_to_buffer(pixels) -> bytes:
    """Quantise pixels to a flat 8-bit RGBA buffer; RGB input gets opaque alpha."""
    arr = _as_pixels(pixels)
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255.0)
        arr = np.concatenate([arr, alpha], axis=2)
    return np.clip(np.round(arr), 0, 255).astype(np.uint8).tobytes()


def luma_block_matrix(pixels) -> np.ndarray:
    """One luma sample per 8x8 block, taken at the block's anchor pixel."""
    src = _as_pixels(pixels)
    anchors = src[::_BLOCK_SIZE, ::_BLOCK_SIZE]
    return (anchors[:, :, 0] + anchors[:, :, 1] + anchors[:, :, 2]) / 3.0


# ---- public API -----------------------------------------------------------

def embed_image_watermark(pixels, key: ImageWatermarkKey) -> np.ndarray:
    """Return a watermarked copy of *pixels* as float64 in [0, 255].

    Values are not rounded; quantise only when serialising (see
    :func:`write_image`).
    """
    src = _as_pixels(pixels)
    blocks = luma_block_matrix(src)
    length = min(PAYLOAD_LENGTH, blocks.size)
    watermark = generate_binary_watermark(key, length)

    coeffs = qim_embed(dct2(blocks), watermark, key.alpha)
    marked = np.clip(idct2(coeffs), 0.0, 255.0)
    delta = (marked - blocks) * key.strength

    # one scalar per block, spread over all of its pixels
    h, w = src.shape[:2]
    spread = np.repeat(np.repeat(delta, _BLOCK_SIZE, axis=0), _BLOCK_SIZE, axis=1)[:h, :w]

    out = src.copy()
    out[:, :, :3] = np.clip(src[:, :, :3] + spread[:, :, None], 0.0, 255.0)
    return out


def extract_image_watermark(pixels, key: ImageWatermarkKey) -> ImageVerificationResult:
    """Compare the QIM bits of *pixels* with the payload derived from *key*."""
    blocks = luma_block_matrix(pixels)
    length = min(PAYLOAD_LENGTH, blocks.size)
    observed = qim_extract(dct2(blocks), length, key.alpha)
    expected = generate_binary_watermark(key, length)

    confidence = bit_agreement(expected, observed)
    return ImageVerificationResult(
        is_watermarked=confidence > DETECTION_THRESHOLD,
        confidence=confidence,
    )


def embed_image_buffer(buffer, width: int, height: int, key: ImageWatermarkKey) -> bytes:
    """RGBA buffer in, RGBA buffer of the same dimensions out.

    The 8-bit output rounds away part of the sub-level QIM move; keep the
    float result of :func:`embed_image_watermark` when precision matters.
    """
    return pixels_to_buffer(embed_image_watermark(pixels_from_buffer(buffer, width, height), key))


def extract_image_buffer(buffer, width: int, height: int, key: ImageWatermarkKey) -> ImageVerificationResult:
    return extract_image_watermark(pixels_from_buffer(buffer, width, height), key)


# ---- file I/O & metrics ---------------------------------------------------

def read_image(path: str) -> np.ndarray:
    """Read an image as float64 (H, W, 3|4) in [0, 255]; 16-bit files are rescaled."""
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise InvalidInput(f"Could not read image: {path}")
    if img.ndim == 2:
        img = np.stack([img, img, img], axis=-1)
    if img.dtype == np.uint16:
        return img.astype(np.float64) / 257.0
    return img.astype(np.float64)


def write_image(path: str, pixels, bit_depth: int = 16) -> None:
    """Write *pixels*; PNG/TIFF keep 16 bits so sub-level changes survive."""
    arr = _as_pixels(pixels)
    if bit_depth == 16 and Path(path).suffix.lower() in _SIXTEEN_BIT_FORMATS:
        out = np.clip(np.round(arr * 257.0), 0, 65535).astype(np.uint16)
    else:
        out = np.clip(np.round(arr), 0, 255).astype(np.uint8)
    if not cv2.imwrite(str(path), out):
        raise IOError(f"Could not write image: {path}")


def psnr(original, modified) -> float:
    mse = np.mean((np.asarray(original, dtype=np.float64) - np.asarray(modified, dtype=np.float64)) ** 2)
    if mse == 0:
        return float("inf")
    return float(10 * np.log10(255.0 ** 2 / mse))

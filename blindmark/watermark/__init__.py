"""
Watermarking package — blind image, audio & video watermark embed / extract.

Provides a unified file API used by the HTTP service:
    embed_watermark(src_path, dst_path, passphrase, media_type) -> dict
    extract_watermark(file_path, passphrase, media_type) -> dict

Neither direction needs the original media: the pass-phrase alone regenerates
the payload that extraction compares against.
"""

import hashlib
import logging

from blindmark.watermark import audio, image, video
from blindmark.watermark.audio import embed_audio_watermark, extract_audio_watermark
from blindmark.watermark.errors import InvalidInput, WatermarkError
from blindmark.watermark.image import embed_image_watermark, extract_image_watermark
from blindmark.watermark.video import embed_video_watermark, extract_video_watermark

__all__ = [
    "embed_watermark",
    "extract_watermark",
    "make_key",
    "detect_media_type",
    "watermark_id",
    "embed_image_watermark",
    "extract_image_watermark",
    "embed_audio_watermark",
    "extract_audio_watermark",
    "embed_video_watermark",
    "extract_video_watermark",
    "WatermarkError",
    "InvalidInput",
]

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "bmp", "tif", "tiff", "webp"}
AUDIO_EXTENSIONS = {"mp3", "wav", "ogg", "flac", "aac"}
VIDEO_EXTENSIONS = {"mp4", "avi", "mkv", "mov", "webm"}


def detect_media_type(filepath: str) -> str:
    ext = filepath.rsplit(".", 1)[-1].lower() if "." in filepath else ""
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in AUDIO_EXTENSIONS:
        return "audio"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    raise InvalidInput(f"Unsupported extension: .{ext}")


def watermark_id(passphrase: str) -> str:
    """Short public fingerprint of a pass-phrase (never the pass-phrase itself)."""
    return hashlib.sha256(passphrase.encode("utf-8")).hexdigest()[:16]


def make_key(passphrase: str, media_type: str, **params):
    """Derive the codec key for *media_type*; *params* override the defaults.

    Image and video share the image key (strength, alpha); audio takes
    strength, delay and spread_factor.
    """
    if media_type in ("image", "video"):
        return image.generate_key(passphrase, **params)
    if media_type == "audio":
        return audio.generate_key(passphrase, **params)
    raise InvalidInput(f"Unknown media type: {media_type}")


def embed_watermark(
    src_path: str,
    dst_path: str,
    passphrase: str,
    media_type: str | None = None,
    key=None,
    fourcc: str = video.DEFAULT_FOURCC,
) -> dict:
    """Embed the watermark derived from *passphrase* into *src_path*.

    Audio is always written as 16-bit WAVE, so *dst_path* must end in ``.wav``
    for audio input.  Returns a metadata dict with ``watermark_id``, ``method``,
    ``payload_bits`` and a quality figure for the media type.
    """
    if media_type is None:
        media_type = detect_media_type(src_path)
    if key is None:
        key = make_key(passphrase, media_type)

    meta = {"watermark_id": watermark_id(passphrase), "media_type": media_type}

    if media_type == "image":
        pixels = image.read_image(src_path)
        marked = embed_image_watermark(pixels, key)
        image.write_image(dst_path, marked)
        h, w = pixels.shape[:2]
        meta.update(
            method="block-DCT-QIM",
            payload_bits=image.payload_capacity(h, w),
            psnr_db=round(image.psnr(pixels, marked), 2),
        )
    elif media_type == "audio":
        if not dst_path.lower().endswith(".wav"):
            raise InvalidInput("Watermarked audio is written as WAVE; use a .wav destination")
        samples, rate = audio.read_audio(src_path)
        marked = embed_audio_watermark(samples, rate, samples.shape[1], key)
        audio.write_audio(dst_path, marked, rate)
        meta.update(
            method="LSB+AM+echo+spread-spectrum",
            payload_bits=min(audio.PAYLOAD_LENGTH, samples.shape[0]),
            snr_db=round(audio.snr(samples[:, 0], marked[:, 0]), 2),
            sample_rate=rate,
        )
    elif media_type == "video":
        info = video.embed_video_file(src_path, dst_path, key, fourcc=fourcc)
        meta.update(method="frame-sampled block-DCT-QIM", **info)
    else:
        raise InvalidInput(f"Unknown media type: {media_type}")

    logger.info("embedded %s watermark %s into %s", media_type, meta["watermark_id"], dst_path)
    return meta


def extract_watermark(
    filepath: str,
    passphrase: str,
    media_type: str | None = None,
    key=None,
) -> dict:
    """Check *filepath* for the watermark derived from *passphrase*.

    Returns the codec's verification result as a dict, plus ``media_type``
    and ``watermark_id``.
    """
    if media_type is None:
        media_type = detect_media_type(filepath)
    if key is None:
        key = make_key(passphrase, media_type)

    if media_type == "image":
        result = extract_image_watermark(image.read_image(filepath), key)
    elif media_type == "audio":
        samples, _ = audio.read_audio(filepath)
        result = extract_audio_watermark(samples, key)
    elif media_type == "video":
        result = extract_video_watermark(video.VideoFileSource(filepath), key)
    else:
        raise InvalidInput(f"Unknown media type: {media_type}")

    out = result.to_dict()
    out.update(media_type=media_type, watermark_id=watermark_id(passphrase))
    logger.debug("%s verification of %s: confidence=%.3f", media_type, filepath, out["confidence"])
    return out

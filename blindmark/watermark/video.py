"""
Video watermarking by sampled frames.

Technique:
  • Walk the frames in order.  The first frame of every 30-frame cycle is
    watermarked with the image codec (block-DCT + QIM).
  • The next two frames are replaced by that same watermarked frame, so each
    cycle carries the payload on three consecutive frames.
  • All other frames pass through untouched.
  • Frames are re-encoded with OpenCV's VideoWriter.

On extraction:
  • Only the first frame of each cycle is read; the per-frame confidences are
    averaged and compared with the aggregate threshold.

Dependencies: numpy, cv2 (OpenCV).
"""

import logging
import os
import tempfile
from dataclasses import dataclass, asdict, field
from typing import Callable, Iterable, Iterator, List, Optional

import numpy as np
import cv2

from blindmark.watermark.errors import InvalidInput
from blindmark.watermark.image import (
    ImageWatermarkKey,
    embed_image_watermark,
    extract_image_watermark,
    payload_capacity,
    psnr,
)

logger = logging.getLogger(__name__)

# ---- tuning knobs --------------------------------------------------------
DEFAULT_FRAME_INTERVAL = 30   # one watermarked cycle per second at 30 fps
DEFAULT_REPEAT = 2            # duplicates after the embedded frame
DETECTION_THRESHOLD = 0.65    # aggregate; the image codec itself uses 0.7
DEFAULT_FOURCC = "mp4v"
_DEFAULT_FPS = 30.0


@dataclass
class VideoVerificationResult:
    is_watermarked: bool
    confidence: float
    frame_confidences: List[float] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ---- frame sources --------------------------------------------------------

class ArrayFrameSource:
    """In-memory frames, mainly for tests and callers that decode themselves."""

    def __init__(self, frames: Iterable[np.ndarray], fps: float = _DEFAULT_FPS):
        self.frames = list(frames)
        if not self.frames:
            raise InvalidInput("Frame source holds no frames")
        self.fps = float(fps)
        self.height, self.width = self.frames[0].shape[:2]
        self.frame_count = len(self.frames)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.frames)


class VideoFileSource:
    """Frames decoded from a file by ``cv2.VideoCapture`` (BGR, uint8)."""

    def __init__(self, path: str):
        self.path = str(path)
        cap = cv2.VideoCapture(self.path)
        if not cap.isOpened():
            raise InvalidInput(f"Cannot open video: {path}")
        try:
            self.fps = cap.get(cv2.CAP_PROP_FPS) or _DEFAULT_FPS
            self.width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            self.height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            self.frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        finally:
            cap.release()

    def __iter__(self) -> Iterator[np.ndarray]:
        cap = cv2.VideoCapture(self.path)
        try:
            while True:
                ret, frame = cap.read()
                if not ret:
                    break
                yield frame
        finally:
            cap.release()


# ---- scheduling -----------------------------------------------------------

class FrameScheduler:
    """Per-cycle embed/duplicate state machine wrapped around the image codec.

    Frames must be fed in strictly increasing index order: the cached frame of
    a cycle is only valid for the frames that immediately follow it.
    """

    def __init__(
        self,
        key: ImageWatermarkKey,
        interval: int = DEFAULT_FRAME_INTERVAL,
        repeat: int = DEFAULT_REPEAT,
    ):
        if interval < 1:
            raise InvalidInput(f"interval must be >= 1, got {interval}")
        if not 0 <= repeat < interval:
            raise InvalidInput(f"repeat must be in [0, {interval}), got {repeat}")
        self.key = key
        self.interval = interval
        self.repeat = repeat
        self.frames_seen = 0
        self.frames_watermarked = 0
        self._last_index = -1
        self._cached: Optional[np.ndarray] = None
        self._cached_cycle: Optional[int] = None
        self.first_frame_psnr: Optional[float] = None

    def process(self, index: int, frame: np.ndarray) -> np.ndarray:
        if index <= self._last_index:
            raise InvalidInput(
                f"Frame {index} submitted after frame {self._last_index}; frames must be in order"
            )
        self._last_index = index
        self.frames_seen += 1

        cycle, position = divmod(index, self.interval)
        if position == 0:
            self._cached = embed_image_watermark(frame, self.key)
            self._cached_cycle = cycle
            self.frames_watermarked += 1
            if index == 0:
                self.first_frame_psnr = psnr(frame, self._cached)
            return self._cached.copy()
        if position <= self.repeat and self._cached_cycle == cycle:
            return self._cached.copy()
        return frame


# ---- helpers --------------------------------------------------------------

def _to_bgr_uint8(frame: np.ndarray) -> np.ndarray:
    arr = np.asarray(frame)
    if arr.ndim == 3 and arr.shape[2] == 4:
        arr = arr[:, :, :3]
    return np.ascontiguousarray(np.clip(np.round(arr), 0, 255).astype(np.uint8))


def _encode(
    source,
    scheduler: FrameScheduler,
    on_progress: Optional[Callable[[float], None]] = None,
    fourcc: str = DEFAULT_FOURCC,
    suffix: str = ".mp4",
) -> bytes:
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    os.close(fd)
    writer = cv2.VideoWriter(
        tmp_path, cv2.VideoWriter_fourcc(*fourcc), source.fps, (source.width, source.height)
    )
    try:
        if not writer.isOpened():
            raise IOError(f"Cannot open video writer ({fourcc}) for {suffix}")
        total = source.frame_count
        for index, frame in enumerate(source):
            writer.write(_to_bgr_uint8(scheduler.process(index, frame)))
            if on_progress:
                seen = max(total, index + 1)
                on_progress((index + 1) / seen * 100.0)
        writer.release()

        if scheduler.frames_seen == 0:
            raise InvalidInput("No frames decoded from video")
        logger.debug(
            "encoded %d frames, %d watermarked", scheduler.frames_seen, scheduler.frames_watermarked
        )
        with open(tmp_path, "rb") as fh:
            return fh.read()
    finally:
        writer.release()
        os.unlink(tmp_path)


# ---- public API -----------------------------------------------------------

def embed_video_watermark(
    source,
    key: ImageWatermarkKey,
    on_progress: Optional[Callable[[float], None]] = None,
    fourcc: str = DEFAULT_FOURCC,
    suffix: str = ".mp4",
) -> bytes:
    """Watermark every frame of *source* per the cycle policy; return encoded bytes.

    *on_progress* receives a percentage after each frame.
    """
    return _encode(source, FrameScheduler(key), on_progress, fourcc, suffix)


def extract_video_watermark(
    source,
    key: ImageWatermarkKey,
    interval: int = DEFAULT_FRAME_INTERVAL,
) -> VideoVerificationResult:
    """Average the image-codec confidence over the first frame of every cycle."""
    confidences: List[float] = []
    for index, frame in enumerate(source):
        if index % interval == 0:
            confidences.append(extract_image_watermark(frame, key).confidence)

    if not confidences:
        raise InvalidInput("No frames decoded from video")

    mean = float(np.mean(confidences))
    return VideoVerificationResult(
        is_watermarked=mean > DETECTION_THRESHOLD,
        confidence=mean,
        frame_confidences=confidences,
    )


def embed_video_file(src_path: str, dst_path: str, key: ImageWatermarkKey, fourcc: str = DEFAULT_FOURCC) -> dict:
    """Watermark the video at *src_path* into *dst_path*; return metadata."""
    source = VideoFileSource(src_path)
    scheduler = FrameScheduler(key)
    suffix = os.path.splitext(dst_path)[1] or ".mp4"
    data = _encode(source, scheduler, fourcc=fourcc, suffix=suffix)
    with open(dst_path, "wb") as fh:
        fh.write(data)

    return {
        "payload_bits": payload_capacity(source.height, source.width),
        "frames_watermarked": scheduler.frames_watermarked,
        "total_frames": scheduler.frames_seen,
        "first_frame_psnr_db": (
            round(scheduler.first_frame_psnr, 2) if scheduler.first_frame_psnr is not None else None
        ),
    }

import os


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")

    # Upload settings
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", 500 * 1024 * 1024))  # 500 MB
    ALLOWED_EXTENSIONS = {
        "png", "jpg", "jpeg", "bmp", "tif", "tiff", "webp",  # image
        "mp3", "wav", "ogg", "flac", "aac",                  # audio
        "mp4", "avi", "mkv", "mov", "webm",                  # video
    }

    # Watermark key parameters (the pass-phrase comes with each request)
    WATERMARK_IMAGE_STRENGTH = _env_float("WATERMARK_IMAGE_STRENGTH", 0.35)
    WATERMARK_IMAGE_ALPHA = _env_float("WATERMARK_IMAGE_ALPHA", 8.0)
    WATERMARK_AUDIO_STRENGTH = _env_float("WATERMARK_AUDIO_STRENGTH", 0.08)
    WATERMARK_AUDIO_DELAY = int(os.environ.get("WATERMARK_AUDIO_DELAY", 100))  # samples
    WATERMARK_AUDIO_SPREAD_FACTOR = _env_float("WATERMARK_AUDIO_SPREAD_FACTOR", 2.0)

    # OpenCV fourcc used when re-encoding watermarked video
    VIDEO_FOURCC = os.environ.get("VIDEO_FOURCC", "mp4v")


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024


class ProductionConfig(Config):
    DEBUG = False

    # Trust proxy headers from Nginx
    PREFERRED_URL_SCHEME = "https"

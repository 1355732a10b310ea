"""Exceptions raised by the watermark codecs."""


class WatermarkError(Exception):
    """Base class for codec errors."""


class InvalidInput(WatermarkError, ValueError):
    """Malformed input: empty buffer, wrong shape, corrupt container, etc.

    A missing or mismatched watermark is *not* an error; extraction reports
    it as a low confidence score instead.
    """

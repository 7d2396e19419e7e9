from __future__ import annotations


class CaptureEngineError(Exception):
    """Base class for every error raised by sitecapture_engine."""


class CaptureError(CaptureEngineError):
    """Navigation, screenshot or browser failure. Fatal for the whole job."""


class CompositionError(CaptureError):
    """Segments cannot be stitched (e.g. width mismatch). The image is unusable."""


class OcrError(CaptureEngineError):
    """Text extraction failed entirely; no partial text is returned."""


class MissingCredentialsError(OcrError):
    """Vision backend credentials are not configured. Raised before any work starts."""


class QuotaExceededError(OcrError):
    """The vision backend quota is exhausted."""


class ImageTooLargeError(OcrError):
    """The vision backend rejected the image payload size."""

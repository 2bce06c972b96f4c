from __future__ import annotations

from typing import Optional


class DecodeError(RuntimeError):
    """Raised when a raster source or spectral data block cannot be decoded."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{message} ({source})"
        super().__init__(message)


class GeometryError(ValueError):
    """Raised when a crop, rescale or sampling region has no usable area."""


class MalformedCalibration(UserWarning):
    """Emitted when a wavenumber mapper falls back to its default mapping."""

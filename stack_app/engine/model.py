from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np


@dataclass(frozen=True, eq=False)
class Spectrum:
    x: np.ndarray                   # wavenumber or pixel index
    y: np.ndarray                   # transmittance/absorbance/counts
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        x = np.array(self.x, dtype=float)
        y = np.array(self.y, dtype=float)
        x.setflags(write=False)
        y.setflags(write=False)
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)

    def __len__(self) -> int:
        return int(self.x.size)

    @property
    def is_consistent(self) -> bool:
        return self.x.ndim == 1 and self.x.shape == self.y.shape and self.x.size > 0


def as_rgba(pixels: np.ndarray) -> np.ndarray:
    """Validate ``pixels`` as a ``(height, width, 4)`` ``uint8`` raster.

    Greyscale and RGB arrays are promoted to RGBA with an opaque alpha channel.
    The input is returned as-is when it is already a contiguous RGBA ``uint8``
    array so in-place utilities keep operating on the caller's buffer.
    """

    arr = np.asarray(pixels)
    if arr.ndim == 2:
        arr = np.stack([arr, arr, arr], axis=-1)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"Expected an RGBA raster, got array of shape {arr.shape}")
    if arr.dtype != np.uint8:
        arr = np.clip(np.rint(arr), 0, 255).astype(np.uint8)
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=-1)
    return arr

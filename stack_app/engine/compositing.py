"""Colour and geometry transforms applied to layers before and after resampling.

The pixel utilities (:func:`chroma_key`, :func:`white_to_transparent`,
:func:`recolor`) modify the RGBA buffer handed to them and return that same
buffer. The geometric helpers return new arrays.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from stack_app.engine.errors import GeometryError
from stack_app.engine.model import as_rgba
from stack_app.engine.resample import round_channels

logger = logging.getLogger(__name__)

__all__ = [
    "hex_to_rgb",
    "rgb_to_hex",
    "color_distance",
    "chroma_key",
    "white_to_transparent",
    "recolor",
    "scale_to_match_distance",
    "apply_y_scale",
    "crop",
    "sample_color",
]

MAX_RGB_DISTANCE = math.sqrt(3 * 255 * 255)
DEFAULT_WHITE_THRESHOLD = 250
# Relative tolerance below which a rescale is skipped.
DISTANCE_SCALE_EPS = 0.005
Y_SCALE_EPS = 0.001

_HEX_RE = re.compile(r"^([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)

Color = Union[str, Sequence[int]]


def hex_to_rgb(value: str) -> Optional[Tuple[int, int, int]]:
    """Parse ``#rgb`` / ``#rrggbb`` into an ``(r, g, b)`` tuple, ``None`` if invalid."""

    if not isinstance(value, str):
        return None
    h = value.strip().lstrip("#")
    if len(h) == 3:
        h = "".join(ch * 2 for ch in h)
    m = _HEX_RE.match(h)
    if not m:
        return None
    return tuple(int(part, 16) for part in m.groups())


def rgb_to_hex(r: int, g: int, b: int) -> str:
    return "#" + "".join(f"{int(c):02x}" for c in (r, g, b))


def color_distance(r1, g1, b1, r2, g2, b2) -> float:
    return math.sqrt((r1 - r2) ** 2 + (g1 - g2) ** 2 + (b1 - b2) ** 2)


def _coerce_rgb(color: Color, default: Optional[Tuple[int, int, int]] = None) -> Tuple[int, int, int]:
    if isinstance(color, str):
        rgb = hex_to_rgb(color)
    else:
        try:
            r, g, b = (int(c) for c in list(color)[:3])
            rgb = (r, g, b)
        except (TypeError, ValueError):
            rgb = None
    if rgb is None:
        if default is None:
            raise ValueError(f"Unrecognised colour: {color!r}")
        return default
    return rgb


def _writable_rgba(pixels: np.ndarray) -> np.ndarray:
    arr = np.asarray(pixels)
    if arr.ndim != 3 or arr.shape[2] != 4 or arr.dtype != np.uint8:
        raise ValueError(f"Expected a (height, width, 4) uint8 buffer, got {arr.dtype} {arr.shape}")
    return arr


def chroma_key(
    pixels: np.ndarray,
    target: Color,
    tolerance: float,
    smoothness: float,
) -> np.ndarray:
    """Make pixels close to ``target`` transparent, in place.

    ``tolerance`` and ``smoothness`` are percentages. Pixels within
    ``tolerance% * sqrt(3 * 255**2)`` of the target lose their alpha. When
    ``smoothness`` is positive, a feather band of width
    ``max(1, threshold * smoothness%)`` beyond the threshold ramps alpha
    linearly back up; everything further away keeps its alpha.
    """

    buf = _writable_rgba(pixels)
    tr, tg, tb = _coerce_rgb(target)
    threshold = (float(tolerance) / 100.0) * MAX_RGB_DISTANCE
    feather = max(1.0, threshold * (float(smoothness) / 100.0))

    rgb = buf[..., :3].astype(np.float64)
    dist = np.sqrt(
        (rgb[..., 0] - tr) ** 2 + (rgb[..., 1] - tg) ** 2 + (rgb[..., 2] - tb) ** 2
    )
    alpha = buf[..., 3].astype(np.float64)

    keyed = dist <= threshold
    if smoothness > 0:
        band = ~keyed & (dist < threshold + feather)
        ramp = (dist - threshold) / feather
        buf[..., 3] = np.where(band, round_channels(alpha * ramp), buf[..., 3])
    buf[..., 3][keyed] = 0
    return buf


def white_to_transparent(pixels: np.ndarray, threshold: int = DEFAULT_WHITE_THRESHOLD) -> np.ndarray:
    """Zero the alpha of near-white pixels (all of R, G, B >= ``threshold``), in place."""

    buf = _writable_rgba(pixels)
    mask = np.all(buf[..., :3] >= threshold, axis=-1)
    buf[..., 3][mask] = 0
    return buf


def recolor(pixels: np.ndarray, color: Color) -> np.ndarray:
    """Paint every visible pixel with ``color`` keeping its alpha, in place.

    An unparseable colour falls back to black.
    """

    buf = _writable_rgba(pixels)
    rgb = np.array(_coerce_rgb(color, default=(0, 0, 0)), dtype=np.uint8)
    visible = buf[..., 3] > 0
    buf[..., :3][visible] = rgb
    return buf


def _resize_nearest(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    if width <= 0 or height <= 0:
        raise GeometryError(f"Rescale would produce an empty {width}x{height} raster")
    img = Image.fromarray(as_rgba(pixels))
    return np.array(img.resize((width, height), resample=Image.Resampling.NEAREST), dtype=np.uint8)


def scale_to_match_distance(
    pixels: np.ndarray,
    ref_distance: float,
    user_distance: float,
    scale_y: Optional[float] = 1.0,
    scale_x: Optional[float] = 1.0,
) -> np.ndarray:
    """Scale a layer so a distance measured on it matches a reference layer.

    The uniform factor is ``ref_distance / user_distance``; ``scale_x`` and
    ``scale_y`` multiply it per axis. Non-positive distances, or factors all
    within 0.5% of 1, return the input unchanged.
    """

    if user_distance <= 0 or ref_distance <= 0:
        return pixels
    scale = ref_distance / user_distance
    sy = 1.0 if scale_y is None else float(scale_y)
    sx = 1.0 if scale_x is None else float(scale_x)
    if all(abs(f - 1) < DISTANCE_SCALE_EPS for f in (scale, sy, sx)):
        return pixels
    h, w = pixels.shape[:2]
    new_w = int(round(w * scale * sx))
    new_h = int(round(h * scale * sy))
    logger.debug("Distance rescale %dx%d -> %dx%d (factor %.4f)", w, h, new_w, new_h, scale)
    return _resize_nearest(pixels, new_w, new_h)


def apply_y_scale(pixels: np.ndarray, scale_y: Optional[float]) -> np.ndarray:
    """Stretch only the vertical axis; negligible or empty results keep the input."""

    if not scale_y or abs(scale_y - 1) < Y_SCALE_EPS:
        return pixels
    h, w = pixels.shape[:2]
    new_h = int(round(h * scale_y))
    if new_h <= 0:
        return pixels
    return _resize_nearest(pixels, w, new_h)


def crop(pixels: np.ndarray, x: float, y: float, width: float, height: float) -> np.ndarray:
    """Copy the rectangle at ``(x, y)`` clamped to the raster bounds.

    Raises :class:`GeometryError` when nothing of the rectangle remains.
    """

    h, w = pixels.shape[:2]
    if w == 0 or h == 0:
        raise GeometryError("Cannot crop an empty raster")
    ix = int(math.floor(max(0, min(x, w - 1))))
    iy = int(math.floor(max(0, min(y, h - 1))))
    iw = int(math.floor(min(width, w - ix)))
    ih = int(math.floor(min(height, h - iy)))
    if iw <= 0 or ih <= 0:
        raise GeometryError(f"Invalid crop dimensions {iw}x{ih} at ({ix}, {iy})")
    return np.array(pixels[iy:iy + ih, ix:ix + iw], copy=True)


def sample_color(pixels: np.ndarray, x: float, y: float, radius: int = 2) -> Optional[str]:
    """Average RGB around ``(x, y)`` as ``#rrggbb``.

    The neighbourhood radius is limited to a quarter of each image dimension.
    Returns ``None`` when the neighbourhood lies entirely outside the raster.
    """

    h, w = pixels.shape[:2]
    r = max(0, min(int(radius), w // 4, h // 4))
    cx, cy = int(math.floor(x)), int(math.floor(y))
    x0, x1 = max(cx - r, 0), min(cx + r, w - 1)
    y0, y1 = max(cy - r, 0), min(cy + r, h - 1)
    if x0 > x1 or y0 > y1:
        return None
    window = np.asarray(pixels[y0:y1 + 1, x0:x1 + 1, :3], dtype=np.float64)
    mean = round_channels(window.reshape(-1, 3).mean(axis=0))
    return rgb_to_hex(*mean)

from __future__ import annotations

import logging

import numpy as np

from stack_app.engine.errors import GeometryError
from stack_app.engine.model import as_rgba
from stack_app.engine.wavenumber_map import WavenumberMapper

logger = logging.getLogger(__name__)

__all__ = ["bilinear_blend", "bilinear_sample", "round_channels", "resample_to_wavenumber"]


def bilinear_blend(v00, v10, v01, v11, fx, fy):
    """Blend the four neighbours of a sample point.

    ``v10`` is the right neighbour of ``v00``, ``v01`` the one below it and
    ``v11`` the diagonal; ``fx``/``fy`` are the fractional offsets in ``[0, 1]``.
    """

    return (
        v00 * (1 - fx) * (1 - fy)
        + v10 * fx * (1 - fy)
        + v01 * (1 - fx) * fy
        + v11 * fx * fy
    )


def bilinear_sample(pixels: np.ndarray, sx, sy) -> np.ndarray:
    """Sample ``pixels`` at fractional coordinates ``(sx, sy)``.

    ``sx`` and ``sy`` broadcast against each other; pass ``sx[None, :]`` and
    ``sy[:, None]`` to sample a full grid. Coordinates are expected inside
    ``[0, width - 1] x [0, height - 1]``; the right/bottom neighbours are
    clamped to the last column/row. Returns float channel values.
    """

    src = np.asarray(pixels, dtype=np.float64)
    h, w = src.shape[:2]
    sx, sy = np.broadcast_arrays(np.asarray(sx, dtype=float), np.asarray(sy, dtype=float))

    x0 = np.clip(np.floor(sx).astype(np.intp), 0, w - 1)
    y0 = np.clip(np.floor(sy).astype(np.intp), 0, h - 1)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)
    fx = (sx - x0)[..., None]
    fy = (sy - y0)[..., None]

    return bilinear_blend(src[y0, x0], src[y0, x1], src[y1, x0], src[y1, x1], fx, fy)


def round_channels(values: np.ndarray) -> np.ndarray:
    """Round half up to the nearest integer channel value."""

    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


def resample_to_wavenumber(
    source: np.ndarray,
    mapper: WavenumberMapper,
    target_min: float,
    target_max: float,
    target_width: int,
    vertical_scale: float = 1.0,
) -> np.ndarray:
    """Resample ``source`` onto a uniform wavenumber grid.

    Output column ``ox`` holds wavenumber ``target_max - (target_max -
    target_min) * ox / target_width``, so high wavenumbers stay on the left.
    Each column is located in the source through
    ``mapper.wavenumber_to_pixel`` and clamped to the source width only after
    mapping. Rows are scaled by ``vertical_scale`` without remapping. All four
    channels, alpha included, are bilinearly interpolated; no other
    smoothing is applied.
    """

    src = as_rgba(source)
    src_h, src_w = src.shape[:2]
    target_width = int(target_width)
    out_h = int(round(src_h * (1.0 if vertical_scale is None else float(vertical_scale))))
    if target_width <= 0 or out_h <= 0 or src_w == 0 or src_h == 0:
        raise GeometryError(
            f"Cannot resample {src_w}x{src_h} raster to {target_width}x{out_h}"
        )

    target_range = float(target_max) - float(target_min)
    ox = np.arange(target_width, dtype=float)
    wavenumbers = float(target_max) - target_range * ox / target_width
    sx = np.asarray(mapper.wavenumber_to_pixel(wavenumbers), dtype=float)
    sx = np.clip(np.nan_to_num(sx, nan=0.0), 0.0, src_w - 1)

    scale_h = out_h / src_h
    sy = np.arange(out_h, dtype=float) / scale_h

    logger.debug(
        "Resampling %dx%d -> %dx%d over %.1f..%.1f cm-1",
        src_w, src_h, target_width, out_h, target_max, target_min,
    )
    blended = bilinear_sample(src, sx[None, :], sy[:, None])
    return round_channels(blended)

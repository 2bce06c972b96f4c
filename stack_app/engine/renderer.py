"""Render numeric spectra as transparent line-art rasters for stacking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from stack_app.engine.model import Spectrum
from stack_app.engine.wavenumber_map import wavenumber_to_fraction

__all__ = ["RenderOptions", "render_spectrum", "normalise_xy"]

PAD_X = 2
PAD_Y = 4
_DPI = 100.0


@dataclass
class RenderOptions:
    width: int = 800
    height: int = 120
    line_width: float = 1.5
    color: str = "#000000"
    # Transmittance dips at absorption bands, so flip to draw peaks pointing up.
    invert_y: bool = True
    ir_piecewise: bool = False
    ir_break: float = 2000.0
    # None: high wavenumber on the left exactly when ir_piecewise is set.
    invert_x: Optional[bool] = None


def _sanitize_xy(x: np.ndarray, y: np.ndarray):
    finite = np.isfinite(x) & np.isfinite(y)
    if np.all(finite):
        return x, y
    return x[finite], y[finite]


def normalise_xy(x: np.ndarray, y: np.ndarray, options: RenderOptions):
    """Map samples to ``[0, 1]`` plot fractions (x left to right, y top to bottom)."""

    min_x, max_x = float(np.min(x)), float(np.max(x))
    min_y, max_y = float(np.min(y)), float(np.max(y))
    range_y = (max_y - min_y) or 1.0

    piecewise_break = options.ir_break if options.ir_piecewise else None
    norm_x = np.asarray(wavenumber_to_fraction(x, min_x, max_x, piecewise_break), dtype=float)
    invert_x = options.ir_piecewise if options.invert_x is None else options.invert_x
    if invert_x:
        norm_x = 1.0 - norm_x

    norm_y = (y - min_y) / range_y
    if options.invert_y:
        norm_y = 1.0 - norm_y
    return norm_x, norm_y


def _fit_canvas(rgba: np.ndarray, width: int, height: int) -> np.ndarray:
    out = np.zeros((height, width, 4), dtype=np.uint8)
    h = min(height, rgba.shape[0])
    w = min(width, rgba.shape[1])
    out[:h, :w] = rgba[:h, :w]
    return out


def render_spectrum(spectrum: Optional[Spectrum], options: Optional[RenderOptions] = None) -> Optional[np.ndarray]:
    """Draw ``spectrum`` as a single polyline on a transparent RGBA raster.

    Returns ``None`` when the spectrum is missing, empty, or its ``x`` and
    ``y`` arrays differ in length.
    """

    if spectrum is None:
        return None
    opts = options or RenderOptions()
    x = np.asarray(spectrum.x, dtype=float).ravel()
    y = np.asarray(spectrum.y, dtype=float).ravel()
    if x.size == 0 or y.size == 0 or x.size != y.size:
        return None
    x, y = _sanitize_xy(x, y)
    if x.size == 0:
        return None

    width, height = int(opts.width), int(opts.height)
    if width <= 0 or height <= 0:
        return None
    norm_x, norm_y = normalise_xy(x, y, opts)
    px = PAD_X + norm_x * (width - 2 * PAD_X)
    py = PAD_Y + norm_y * (height - 2 * PAD_Y)

    fig = Figure(figsize=(width / _DPI, height / _DPI), dpi=_DPI)
    fig.patch.set_alpha(0.0)
    ax = fig.add_axes((0.0, 0.0, 1.0, 1.0))
    ax.set_axis_off()
    ax.patch.set_alpha(0.0)
    ax.set_xlim(0, width)
    ax.set_ylim(height, 0)
    ax.plot(
        px,
        py,
        color=opts.color,
        linewidth=opts.line_width * 72.0 / _DPI,
        solid_capstyle="round",
        solid_joinstyle="round",
    )
    canvas = FigureCanvasAgg(fig)
    canvas.draw()
    rgba = np.array(canvas.buffer_rgba(), dtype=np.uint8)
    if rgba.shape[:2] != (height, width):
        rgba = _fit_canvas(rgba, width, height)
    return rgba

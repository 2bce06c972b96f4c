"""Pixel <-> wavenumber mapping for calibrated scans and declared JCAMP ranges.

Two calibration modes are supported:

* :class:`PointCalibration` -- two or more picked ``(pixel, wavenumber)``
  points. Queries inside the covered range interpolate between the
  bracketing points; queries outside extrapolate with the slope of the
  nearest end segment. Values are never clamped, otherwise spectra beyond
  the calibrated span would be squashed.
* :class:`RangeCalibration` -- a declared ``min``/``max`` wavenumber range
  laid across ``[0, width)`` pixels, high wavenumber on the left. An optional
  ``piecewise_break`` splits the axis in two halves, each linear on its own,
  which is how many IR charts print 4000-2000 and 2000-400 cm^-1 at
  different scales. A break outside ``(min, max)`` is ignored and the axis
  stays a single linear segment.

All mapping functions accept scalars or numpy arrays and return the same kind.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from stack_app.engine.errors import MalformedCalibration

logger = logging.getLogger(__name__)

__all__ = [
    "CalibrationPoint",
    "PointCalibration",
    "RangeCalibration",
    "WavenumberMapper",
    "PointMapper",
    "RangeMapper",
    "build_mapper",
    "interpolate_segments",
    "wavenumber_to_fraction",
    "range_pixel_to_wavenumber",
    "range_wavenumber_to_pixel",
]


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def _pack(values: np.ndarray, scalar: bool):
    return float(values) if scalar else values


def _valid_break(lo: float, hi: float, piecewise_break: Optional[float]) -> bool:
    return piecewise_break is not None and lo < piecewise_break < hi


def _slope(x0: float, y0: float, x1: float, y1: float) -> float:
    dx = x1 - x0
    if dx == 0:
        return 0.0
    return (y1 - y0) / dx


def interpolate_segments(value, xs: Sequence[float], ys: Sequence[float]):
    """Piecewise-linear lookup of ``value`` on the polyline ``(xs, ys)``.

    ``xs`` must be sorted ascending and hold at least two entries. Outside
    ``[xs[0], xs[-1]]`` the first/last segment is extended linearly.
    """

    xs_arr = np.asarray(xs, dtype=float)
    ys_arr = np.asarray(ys, dtype=float)
    scalar = np.ndim(value) == 0
    v = np.asarray(value, dtype=float)

    out = np.interp(v, xs_arr, ys_arr)
    lo_slope = _slope(xs_arr[0], ys_arr[0], xs_arr[1], ys_arr[1])
    hi_slope = _slope(xs_arr[-2], ys_arr[-2], xs_arr[-1], ys_arr[-1])
    out = np.where(v < xs_arr[0], ys_arr[0] + (v - xs_arr[0]) * lo_slope, out)
    out = np.where(v > xs_arr[-1], ys_arr[-1] + (v - xs_arr[-1]) * hi_slope, out)
    return _pack(out, scalar)


def wavenumber_to_fraction(wavenumber, lo: float, hi: float, piecewise_break: Optional[float] = None):
    """Position of ``wavenumber`` along ``[lo, hi]`` as a fraction (0 at ``lo``).

    With a valid ``piecewise_break`` the lower half ``[lo, break]`` fills
    fractions ``[0, 0.5]`` and the upper half ``[break, hi]`` fills ``[0.5, 1]``.
    """

    scalar = np.ndim(wavenumber) == 0
    w = np.asarray(wavenumber, dtype=float)
    if not _valid_break(lo, hi, piecewise_break):
        span = (hi - lo) or 1.0
        return _pack((w - lo) / span, scalar)
    lower = 0.5 * (w - lo) / (piecewise_break - lo)
    upper = 0.5 + 0.5 * (w - piecewise_break) / (hi - piecewise_break)
    return _pack(np.where(w <= piecewise_break, lower, upper), scalar)


def range_pixel_to_wavenumber(px, width: float, lo: float, hi: float, piecewise_break: Optional[float] = None):
    scalar = np.ndim(px) == 0
    t = np.asarray(px, dtype=float) / float(width)
    if not _valid_break(lo, hi, piecewise_break):
        return _pack(hi - (hi - lo) * t, scalar)
    upper = hi - (hi - piecewise_break) * (t / 0.5)
    lower = piecewise_break - (piecewise_break - lo) * ((t - 0.5) / 0.5)
    return _pack(np.where(t <= 0.5, upper, lower), scalar)


def range_wavenumber_to_pixel(wavenumber, width: float, lo: float, hi: float, piecewise_break: Optional[float] = None):
    scalar = np.ndim(wavenumber) == 0
    t = 1.0 - np.asarray(wavenumber_to_fraction(wavenumber, lo, hi, piecewise_break), dtype=float)
    return _pack(t * float(width), scalar)


@dataclass(frozen=True)
class CalibrationPoint:
    pixel: float
    wavenumber: float

    @classmethod
    def coerce(cls, item: Any) -> "CalibrationPoint":
        """Build a point from a ``(pixel, wavenumber)`` pair or a picked-point mapping."""

        if isinstance(item, CalibrationPoint):
            return item
        if isinstance(item, Mapping):
            pixel = item.get("pixel", item.get("x"))
            wavenumber = item.get("wavenumber")
            if pixel is None or wavenumber is None:
                raise ValueError(f"Calibration point needs pixel/x and wavenumber: {item!r}")
            return cls(float(pixel), float(wavenumber))
        pixel, wavenumber = item
        return cls(float(pixel), float(wavenumber))


@dataclass(frozen=True)
class PointCalibration:
    points: Tuple[CalibrationPoint, ...]

    @classmethod
    def from_pairs(cls, pairs: Iterable[Any]) -> "PointCalibration":
        return cls(tuple(CalibrationPoint.coerce(p) for p in pairs))

    def validate(self) -> List[str]:
        errs = []
        if len(self.points) < 2:
            errs.append(f"At least two calibration points are required (got {len(self.points)})")
        if any(not (math.isfinite(p.pixel) and math.isfinite(p.wavenumber)) for p in self.points):
            errs.append("Calibration points must be finite")
        if len(self.points) >= 2:
            if len({p.pixel for p in self.points}) < 2:
                errs.append("Calibration points share a single pixel position")
            if len({p.wavenumber for p in self.points}) < 2:
                errs.append("Calibration points share a single wavenumber")
        return errs


@dataclass(frozen=True)
class RangeCalibration:
    min: float
    max: float
    piecewise_break: Optional[float] = None

    @property
    def is_piecewise(self) -> bool:
        return _valid_break(self.min, self.max, self.piecewise_break)

    def validate(self) -> List[str]:
        errs = []
        if not (math.isfinite(self.min) and math.isfinite(self.max)):
            errs.append("Range bounds must be finite")
        elif self.min >= self.max:
            errs.append(f"Range min ({self.min:g}) must be less than max ({self.max:g})")
        return errs


Calibration = Union[PointCalibration, RangeCalibration]


def _warn_fallback(kind: str, problems: Sequence[str]) -> None:
    message = f"{kind} calibration is malformed, using fallback mapping: {'; '.join(problems)}"
    logger.warning(message)
    warnings.warn(message, MalformedCalibration, stacklevel=3)


class WavenumberMapper:
    """Bidirectional mapping between a pixel column axis and wavenumber."""

    def pixel_to_wavenumber(self, px):
        raise NotImplementedError

    def wavenumber_to_pixel(self, wavenumber):
        raise NotImplementedError


class PointMapper(WavenumberMapper):
    """Multi-point calibration.

    Malformed calibrations fall back instead of raising: with a single point
    every pixel maps to that point's wavenumber (and every wavenumber to its
    pixel); with no points pixels map to ``fallback_wavenumber`` and
    wavenumbers to pixel 0. Non-finite points are dropped, and points that all
    share one pixel or one wavenumber are treated as the first of them alone.
    """

    def __init__(self, calibration: PointCalibration, fallback_wavenumber: float = 0.0):
        self.calibration = calibration
        self.fallback_wavenumber = float(fallback_wavenumber)
        points = [p for p in calibration.points if math.isfinite(p.pixel) and math.isfinite(p.wavenumber)]
        if len({p.pixel for p in points}) < 2 or len({p.wavenumber for p in points}) < 2:
            points = points[:1]
        by_pixel = sorted(points, key=lambda p: p.pixel)
        by_wavenumber = sorted(points, key=lambda p: p.wavenumber)
        self._pixels = [p.pixel for p in by_pixel]
        self._pixel_wavenumbers = [p.wavenumber for p in by_pixel]
        self._wavenumbers = [p.wavenumber for p in by_wavenumber]
        self._wavenumber_pixels = [p.pixel for p in by_wavenumber]
        problems = calibration.validate()
        if problems:
            _warn_fallback("Point", problems)

    def pixel_to_wavenumber(self, px):
        if len(self._pixels) >= 2:
            return interpolate_segments(px, self._pixels, self._pixel_wavenumbers)
        value = self._pixel_wavenumbers[0] if self._pixels else self.fallback_wavenumber
        return _pack(np.full(np.shape(px), value, dtype=float), np.ndim(px) == 0)

    def wavenumber_to_pixel(self, wavenumber):
        if len(self._wavenumbers) >= 2:
            return interpolate_segments(wavenumber, self._wavenumbers, self._wavenumber_pixels)
        value = self._wavenumber_pixels[0] if self._wavenumbers else 0.0
        return _pack(np.full(np.shape(wavenumber), value, dtype=float), np.ndim(wavenumber) == 0)


class RangeMapper(WavenumberMapper):
    """Declared-range calibration over an implicit ``[0, width)`` pixel axis.

    A degenerate range (``min >= max``, non-finite bounds or non-positive
    width) maps every pixel to ``fallback_wavenumber`` (``min`` when not
    given) and every wavenumber to pixel 0.
    """

    def __init__(self, calibration: RangeCalibration, width: float, fallback_wavenumber: Optional[float] = None):
        self.calibration = calibration
        self.width = float(width)
        self.fallback_wavenumber = float(calibration.min if fallback_wavenumber is None else fallback_wavenumber)
        problems = calibration.validate()
        if not self.width > 0:
            problems.append(f"Pixel width must be positive (got {width})")
        self.degenerate = bool(problems)
        if problems:
            _warn_fallback("Range", problems)

    def pixel_to_wavenumber(self, px):
        if self.degenerate:
            return _pack(np.full(np.shape(px), self.fallback_wavenumber, dtype=float), np.ndim(px) == 0)
        cal = self.calibration
        return range_pixel_to_wavenumber(px, self.width, cal.min, cal.max, cal.piecewise_break)

    def wavenumber_to_pixel(self, wavenumber):
        if self.degenerate:
            return _pack(np.zeros(np.shape(wavenumber), dtype=float), np.ndim(wavenumber) == 0)
        cal = self.calibration
        return range_wavenumber_to_pixel(wavenumber, self.width, cal.min, cal.max, cal.piecewise_break)


def _coerce_calibration(calibration: Any) -> Calibration:
    if isinstance(calibration, (PointCalibration, RangeCalibration)):
        return calibration
    if isinstance(calibration, Mapping):
        lo, hi = calibration.get("min"), calibration.get("max")
        if _is_number(lo) and _is_number(hi):
            brk = calibration.get("piecewise_break", calibration.get("piecewiseAt"))
            return RangeCalibration(float(lo), float(hi), float(brk) if _is_number(brk) else None)
        raise ValueError("Range calibration mapping needs numeric 'min' and 'max'")
    if calibration is None:
        return PointCalibration(())
    return PointCalibration.from_pairs(calibration)


def build_mapper(
    calibration: Any,
    width: Optional[float] = None,
    fallback_wavenumber: Optional[float] = None,
) -> WavenumberMapper:
    """Create the mapper matching ``calibration``.

    ``calibration`` may be a :class:`PointCalibration`, a
    :class:`RangeCalibration`, a sequence of ``(pixel, wavenumber)`` pairs or
    picked-point mappings, or a ``{"min", "max", "piecewise_break"}`` mapping.
    Range calibrations need the source ``width``.
    """

    cal = _coerce_calibration(calibration)
    if isinstance(cal, RangeCalibration):
        if width is None:
            raise ValueError("Range calibration requires the pixel width of the source")
        return RangeMapper(cal, width, fallback_wavenumber=fallback_wavenumber)
    return PointMapper(cal, fallback_wavenumber=fallback_wavenumber or 0.0)

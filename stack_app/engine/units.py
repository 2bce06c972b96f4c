"""Absorbance/transmittance helpers for JCAMP ``##YUNITS`` labels."""

from __future__ import annotations

from enum import Enum
from typing import Sequence, Union

import numpy as np

__all__ = [
    "YUnits",
    "classify_units",
    "is_absorbance",
    "is_transmittance",
    "absorbance_to_transmittance",
    "transmittance_to_absorbance",
    "to_display_units",
]

ABSORBANCE_LABELS = ("ABSORBANCE",)
TRANSMITTANCE_LABELS = ("TRANSMITTANCE", "TRANSMISSION", "% TRANSMITTANCE", "% TRANSMISSION")

# Floor applied before log10 so fully opaque samples stay finite.
MIN_TRANSMITTANCE = 1e-10


class YUnits(str, Enum):
    ABSORBANCE = "absorbance"
    TRANSMITTANCE = "transmittance"
    UNKNOWN = "unknown"


def _normalise_label(label: object | None) -> str:
    if label is None or not isinstance(label, str):
        return ""
    return label.strip().upper()


def _matches_one_of(normalised: str, labels: Sequence[str]) -> bool:
    if not normalised:
        return False
    return any(normalised == label or normalised.startswith(label + " ") for label in labels)


def classify_units(label: object | None) -> YUnits:
    """Classify a ``##YUNITS`` value.

    Matching is case-insensitive against a fixed vocabulary, either exactly or
    as a prefix followed by a space (``"ABSORBANCE (AU)"``). A missing or blank
    label is treated as transmittance, the usual default for IR exports.
    """

    normalised = _normalise_label(label)
    if not normalised:
        return YUnits.TRANSMITTANCE
    if _matches_one_of(normalised, ABSORBANCE_LABELS):
        return YUnits.ABSORBANCE
    if _matches_one_of(normalised, TRANSMITTANCE_LABELS):
        return YUnits.TRANSMITTANCE
    return YUnits.UNKNOWN


def is_absorbance(label: object | None) -> bool:
    return classify_units(label) is YUnits.ABSORBANCE


def is_transmittance(label: object | None) -> bool:
    return classify_units(label) is YUnits.TRANSMITTANCE


def absorbance_to_transmittance(a):
    """Return ``10**-a``; non-positive absorbance maps to full transmittance."""

    arr = np.asarray(a, dtype=float)
    with np.errstate(over="ignore"):
        t = np.where(arr > 0, np.power(10.0, -arr), 1.0)
    if t.ndim == 0:
        return float(t)
    return t


def transmittance_to_absorbance(t):
    """Convert fractional or percent transmittance to absorbance.

    Values above 1 are read as percent and divided by 100. The result is
    floored at :data:`MIN_TRANSMITTANCE` before ``-log10`` is applied.
    """

    arr = np.asarray(t, dtype=float)
    fraction = np.where(arr > 1, arr / 100.0, arr)
    a = -np.log10(np.maximum(fraction, MIN_TRANSMITTANCE))
    if a.ndim == 0:
        return float(a)
    return a


def to_display_units(
    y: Sequence[float] | np.ndarray,
    source_label: object | None,
    target_units: Union[YUnits, str],
) -> np.ndarray:
    """Return a copy of ``y`` expressed in ``target_units``.

    Only an absorbance source counts as absorbance; transmittance and unknown
    labels are both handled as transmittance data.
    """

    arr = np.array(y if y is not None else [], dtype=float)
    if arr.size == 0:
        return arr
    source_is_abs = is_absorbance(source_label)
    if not isinstance(target_units, YUnits):
        target_units = YUnits(str(target_units).strip().lower())
    want_abs = target_units is YUnits.ABSORBANCE

    if source_is_abs == want_abs:
        return arr
    if source_is_abs:
        return absorbance_to_transmittance(arr)
    return transmittance_to_absorbance(arr)

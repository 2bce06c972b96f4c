"""Build wavenumber-aligned overlay layers from scans and JCAMP documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from stack_app.engine.audit import log_step, start_audit
from stack_app.engine.compositing import (
    apply_y_scale,
    chroma_key,
    crop,
    recolor,
    scale_to_match_distance,
    white_to_transparent,
)
from stack_app.engine.errors import DecodeError
from stack_app.engine.jcamp_model import JcampDocument, parse_document
from stack_app.engine.model import Spectrum
from stack_app.engine.recipe_model import OverlayRecipe
from stack_app.engine.renderer import PAD_X, render_spectrum
from stack_app.engine.resample import resample_to_wavenumber
from stack_app.engine.units import to_display_units
from stack_app.engine.wavenumber_map import RangeCalibration, RangeMapper, build_mapper
from stack_app.io.jcamp_decoder import SpectrumDecoder, decode_jcamp_text
from stack_app.io.raster_io import RasterSource, load_raster

logger = logging.getLogger(__name__)


@dataclass
class LayerResult:
    pixels: np.ndarray
    wavenumber_range: Tuple[float, float]
    audit: List[str]
    meta: Dict[str, Any] = field(default_factory=dict)


def _label(source: object) -> str:
    text = str(source) if not isinstance(source, bytes) else f"<{len(source)} bytes>"
    return text if len(text) <= 80 else text[:77] + "..."


def apply_background(pixels: np.ndarray, recipe: OverlayRecipe, audit: List[str]) -> np.ndarray:
    background = recipe.background()
    mode = str(background.get("mode", "none")).lower()
    if mode == "white":
        white_to_transparent(pixels, int(background["white_threshold"]))
        log_step(audit, "background", "White made transparent", threshold=background["white_threshold"])
    elif mode == "chroma":
        chroma_key(
            pixels,
            background["chroma_color"],
            float(background["tolerance"]),
            float(background["smoothness"]),
        )
        log_step(
            audit,
            "background",
            "Chroma key applied",
            color=background["chroma_color"],
            tolerance=background["tolerance"],
            smoothness=background["smoothness"],
        )
    return pixels


def _finish_layer(pixels: np.ndarray, recipe: OverlayRecipe, audit: List[str]) -> np.ndarray:
    apply_background(pixels, recipe, audit)
    if recipe.line_color:
        recolor(pixels, recipe.line_color)
        log_step(audit, "recolor", "Line colour normalised", color=recipe.line_color)
    return pixels


def build_image_layer(
    source: RasterSource,
    calibration: Any,
    recipe: Optional[OverlayRecipe] = None,
) -> LayerResult:
    """Decode a scanned spectrum and resample it onto the recipe's target axis.

    ``calibration`` is anything :func:`build_mapper` accepts: picked
    ``(pixel, wavenumber)`` points or a ``{"min", "max"}`` range.
    Raises :class:`DecodeError` when the source cannot be decoded.
    """

    recipe = recipe or OverlayRecipe()
    audit = start_audit(_label(source))
    pixels = load_raster(source)
    log_step(audit, "decode", "Raster decoded", width=pixels.shape[1], height=pixels.shape[0])

    target_min, target_max, target_width = recipe.target_axis()
    mapper = build_mapper(calibration, width=pixels.shape[1], fallback_wavenumber=target_min)
    resampled = resample_to_wavenumber(
        pixels, mapper, target_min, target_max, target_width, recipe.vertical_scale
    )
    log_step(
        audit,
        "resample",
        "Resampled to wavenumber axis",
        min=target_min,
        max=target_max,
        width=target_width,
        vertical_scale=recipe.vertical_scale,
    )
    _finish_layer(resampled, recipe, audit)
    logger.info("Built image layer from %s", _label(source))
    return LayerResult(resampled, (target_min, target_max), audit, meta={"kind": "image"})


def build_spectrum_layer(
    document: Union[str, JcampDocument],
    recipe: Optional[OverlayRecipe] = None,
    decoder: Optional[SpectrumDecoder] = None,
) -> Optional[LayerResult]:
    """Render a JCAMP document's first spectrum as a layer on the target axis.

    Returns ``None`` when the decoded spectrum has no finite samples.
    Raises :class:`DecodeError` when the data block cannot be decoded or the
    decoder yields no usable arrays.
    """

    recipe = recipe or OverlayRecipe()
    doc = parse_document(document) if isinstance(document, str) else document
    title = doc.get("TITLE") or "untitled"
    audit = start_audit(f"JCAMP document '{title}'")

    spectra = list((decoder or decode_jcamp_text)(doc.to_text()) or [])
    if not spectra:
        raise DecodeError("Decoder returned no spectra", source=title)
    first = spectra[0]
    if len(first) == 0 or not first.is_consistent:
        raise DecodeError("Decoder returned no usable x/y arrays", source=title)
    log_step(audit, "decode", "Data block decoded", points=len(first.x), spectra=len(spectra))

    y = to_display_units(first.y, doc.y_units, recipe.display_units)
    spectrum = Spectrum(first.x, y, meta=dict(first.meta))
    log_step(audit, "units", "Converted intensities", source=doc.y_units or "unspecified", target=recipe.display_units)

    opts = recipe.render_options()
    if opts.invert_x is None:
        opts.invert_x = True
    raster = render_spectrum(spectrum, opts)
    if raster is None:
        logger.warning("Spectrum in '%s' has no finite samples; no layer produced", title)
        return None
    log_step(audit, "render", "Line art rendered", width=opts.width, height=opts.height)

    # same samples the renderer plots, so the raster edges match the range
    finite_x = spectrum.x[np.isfinite(spectrum.x) & np.isfinite(spectrum.y)]
    calibration = RangeCalibration(
        float(finite_x.min()),
        float(finite_x.max()),
        float(opts.ir_break) if opts.ir_piecewise else None,
    )
    plot = crop(raster, PAD_X, 0, raster.shape[1] - 2 * PAD_X, raster.shape[0])
    target_min, target_max, target_width = recipe.target_axis()
    mapper = RangeMapper(calibration, plot.shape[1], fallback_wavenumber=target_min)
    resampled = resample_to_wavenumber(
        plot, mapper, target_min, target_max, target_width, recipe.vertical_scale
    )
    log_step(
        audit,
        "resample",
        "Resampled to wavenumber axis",
        min=target_min,
        max=target_max,
        width=target_width,
        piecewise=calibration.is_piecewise,
    )
    _finish_layer(resampled, recipe, audit)
    return LayerResult(
        resampled,
        (target_min, target_max),
        audit,
        meta={"kind": "spectrum", "title": title, "data_range": (calibration.min, calibration.max)},
    )


def crop_image(source: RasterSource, x: float, y: float, width: float, height: float) -> np.ndarray:
    return crop(load_raster(source), x, y, width, height)


def scale_image_to_match_distance(
    source: RasterSource,
    ref_distance: float,
    user_distance: float,
    scale_y: Optional[float] = 1.0,
    scale_x: Optional[float] = 1.0,
) -> np.ndarray:
    return scale_to_match_distance(load_raster(source), ref_distance, user_distance, scale_y, scale_x)


def apply_image_y_scale(source: RasterSource, scale_y: Optional[float]) -> np.ndarray:
    return apply_y_scale(load_raster(source), scale_y)

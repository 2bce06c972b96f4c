"""Command-line tools for aligning spectrum images and editing JCAMP-DX files."""
from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from stack_app.engine.compositing import chroma_key, crop, white_to_transparent
from stack_app.engine.errors import DecodeError, GeometryError
from stack_app.engine.jcamp_model import (
    MetadataEntry,
    decode_data_block_to_affn,
    load_document,
    serialize_document,
)
from stack_app.engine.model import Spectrum
from stack_app.engine.pipeline import build_image_layer, build_spectrum_layer
from stack_app.engine.recipe_model import OverlayRecipe, load_recipe
from stack_app.engine.renderer import render_spectrum
from stack_app.engine.units import to_display_units
from stack_app.engine.wavenumber_map import PointCalibration, RangeCalibration
from stack_app.io.jcamp_decoder import decode_jcamp_text
from stack_app.io.raster_io import load_raster, save_raster

logger = logging.getLogger("stack_app")


def _parse_point(text: str) -> tuple[float, float]:
    try:
        pixel, wavenumber = text.split(":", 1)
        return float(pixel), float(wavenumber)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Calibration point must look like PIXEL:WAVENUMBER, got {text!r}") from exc


def _load_recipe(args: argparse.Namespace) -> OverlayRecipe:
    recipe = load_recipe(args.recipe) if getattr(args, "recipe", None) else OverlayRecipe()
    params = dict(recipe.params)
    target = dict(params.get("target") or {})
    for key, attr in (("min", "target_min"), ("max", "target_max"), ("width", "width")):
        value = getattr(args, attr, None)
        if value is not None:
            target[key] = value
    if target:
        params["target"] = target
    if getattr(args, "scale_y", None) is not None:
        params["vertical_scale"] = args.scale_y
    if getattr(args, "units", None):
        params["display_units"] = args.units
    render = dict(params.get("render") or {})
    for key in ("render_width", "render_height", "color"):
        value = getattr(args, key, None)
        if value is not None:
            render[key.replace("render_", "")] = value
    if getattr(args, "piecewise", False):
        render["ir_piecewise"] = True
    if getattr(args, "ir_break", None) is not None:
        render["ir_break"] = args.ir_break
    if render:
        params["render"] = render
    recipe = OverlayRecipe(params=params, version=recipe.version)
    errs = recipe.validate()
    if errs:
        raise ValueError("; ".join(errs))
    return recipe


def cmd_resample(args: argparse.Namespace) -> int:
    recipe = _load_recipe(args)
    if args.range:
        calibration = RangeCalibration(args.range[0], args.range[1], args.ir_break)
    else:
        calibration = PointCalibration.from_pairs(args.point or [])
    layer = build_image_layer(args.source, calibration, recipe)
    print(save_raster(layer.pixels, args.output))
    for line in layer.audit:
        logger.debug(line)
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    recipe = _load_recipe(args)
    document = load_document(args.jdx)
    if args.aligned:
        layer = build_spectrum_layer(document, recipe)
        if layer is None:
            logger.error("Spectrum in %s is empty; nothing rendered", args.jdx)
            return 1
        print(save_raster(layer.pixels, args.output))
        return 0
    first = decode_jcamp_text(document.to_text())[0]
    y = to_display_units(first.y, document.y_units, recipe.display_units)
    pixels = render_spectrum(Spectrum(first.x, y), recipe.render_options())
    if pixels is None:
        logger.error("Spectrum in %s is empty; nothing rendered", args.jdx)
        return 1
    print(save_raster(pixels, args.output))
    return 0


def cmd_chroma_key(args: argparse.Namespace) -> int:
    pixels = load_raster(args.source)
    chroma_key(pixels, args.color, args.tolerance, args.smoothness)
    print(save_raster(pixels, args.output))
    return 0


def cmd_whiten(args: argparse.Namespace) -> int:
    pixels = load_raster(args.source)
    white_to_transparent(pixels, args.threshold)
    print(save_raster(pixels, args.output))
    return 0


def cmd_crop(args: argparse.Namespace) -> int:
    pixels = crop(load_raster(args.source), args.x, args.y, args.width, args.height)
    print(save_raster(pixels, args.output))
    return 0


def cmd_jdx_decode(args: argparse.Namespace) -> int:
    document = load_document(args.jdx)
    text = serialize_document(document)
    block = decode_data_block_to_affn(text)
    if block is None:
        logger.error("Could not decode the data block of %s", args.jdx)
        return 1
    output = serialize_document(document.with_data_block(block))
    if args.output:
        Path(args.output).write_text(output, encoding="latin-1", newline="\n")
    else:
        sys.stdout.write(output + "\n")
    return 0


def _header_records(paths: Sequence[str]) -> List[dict]:
    records = []
    for path in paths:
        document = load_document(path)
        record = {"path": str(path)}
        for entry in document.entries:
            if isinstance(entry, MetadataEntry):
                record.setdefault(entry.key, entry.value)
        records.append(record)
    return records


def cmd_headers(args: argparse.Namespace) -> int:
    records = _header_records(args.jdx)
    try:
        if args.format == "json":
            json.dump(records, sys.stdout, indent=2, ensure_ascii=False)
            sys.stdout.write("\n")
        else:
            fields = ["path"] + sorted({key for record in records for key in record if key != "path"})
            writer = csv.DictWriter(sys.stdout, fieldnames=fields)
            writer.writeheader()
            for record in records:
                writer.writerow({field: record.get(field, "") for field in fields})
    except BrokenPipeError:
        return 0
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_target_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--recipe", help="YAML recipe with overlay settings.")
        p.add_argument("--target-min", dest="target_min", type=float, help="Lowest wavenumber of the output axis.")
        p.add_argument("--target-max", dest="target_max", type=float, help="Highest wavenumber of the output axis.")
        p.add_argument("--width", type=int, help="Output width in pixels.")
        p.add_argument("--scale-y", dest="scale_y", type=float, help="Vertical scale factor.")

    p = sub.add_parser("resample", help="Resample a scanned spectrum onto a wavenumber axis.")
    p.add_argument("source", help="Image path or data URI.")
    p.add_argument("output", help="Output PNG path.")
    cal = p.add_mutually_exclusive_group(required=True)
    cal.add_argument("--point", action="append", type=_parse_point, help="Calibration point PIXEL:WAVENUMBER (repeat).")
    cal.add_argument("--range", nargs=2, type=float, metavar=("MIN", "MAX"), help="Declared wavenumber range of the image.")
    p.add_argument("--break", dest="ir_break", type=float, help="Piecewise break wavenumber for --range.")
    add_target_args(p)
    p.set_defaults(func=cmd_resample)

    p = sub.add_parser("render", help="Render a JCAMP-DX spectrum as line art.")
    p.add_argument("jdx", help="JCAMP-DX file.")
    p.add_argument("output", help="Output PNG path.")
    p.add_argument("--render-width", dest="render_width", type=int, help="Raster width.")
    p.add_argument("--render-height", dest="render_height", type=int, help="Raster height.")
    p.add_argument("--units", choices=("transmittance", "absorbance"), help="Display units.")
    p.add_argument("--piecewise", action="store_true", help="Use the two-segment IR axis.")
    p.add_argument("--break", dest="ir_break", type=float, help="Piecewise break wavenumber.")
    p.add_argument("--color", help="Line colour (#rrggbb).")
    p.add_argument("--aligned", action="store_true", help="Resample onto the recipe's target axis.")
    add_target_args(p)
    p.set_defaults(func=cmd_render)

    p = sub.add_parser("chroma-key", help="Make a background colour transparent.")
    p.add_argument("source")
    p.add_argument("output")
    p.add_argument("--color", default="#ffffff", help="Colour to key out (default: #ffffff).")
    p.add_argument("--tolerance", type=float, default=10.0, help="Tolerance in percent (default: 10).")
    p.add_argument("--smoothness", type=float, default=20.0, help="Feather width in percent (default: 20).")
    p.set_defaults(func=cmd_chroma_key)

    p = sub.add_parser("whiten", help="Make near-white pixels transparent.")
    p.add_argument("source")
    p.add_argument("output")
    p.add_argument("--threshold", type=int, default=250, help="Channel threshold (default: 250).")
    p.set_defaults(func=cmd_whiten)

    p = sub.add_parser("crop", help="Crop a rectangle out of an image.")
    p.add_argument("source")
    p.add_argument("output")
    for name in ("x", "y", "width", "height"):
        p.add_argument(name, type=float)
    p.set_defaults(func=cmd_crop)

    p = sub.add_parser("jdx-decode", help="Rewrite a JCAMP-DX data block as plain (XY..XY) pairs.")
    p.add_argument("jdx")
    p.add_argument("-o", "--output", help="Write the result here instead of stdout.")
    p.set_defaults(func=cmd_jdx_decode)

    p = sub.add_parser("headers", help="Dump JCAMP-DX header fields.")
    p.add_argument("jdx", nargs="+")
    p.add_argument("--format", choices=("json", "csv"), default="json", help="Output format (default: json).")
    p.set_defaults(func=cmd_headers)

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="[%(levelname)s] %(message)s")
    try:
        return args.func(args)
    except (DecodeError, GeometryError, ValueError, OSError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

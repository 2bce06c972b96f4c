"""Decoder contract and a plain-number (AFFN) decoder for JCAMP-DX data blocks.

Any callable taking the full document text and returning a list of
:class:`~stack_app.engine.model.Spectrum` satisfies :class:`SpectrumDecoder`.
The bundled :func:`decode_jcamp_text` handles the uncompressed forms found in
IR libraries:

* ``##XYDATA=(X++(Y..Y))`` -- abscissa rebuilt from ``FIRSTX``/``DELTAX``/
  ``NPOINTS`` (falling back to ``LASTX`` or the line-start values),
* ``(XY..XY)``-style pair tables (``##XYPOINTS=``, ``##PEAK TABLE=``),
* column data such as ``(X,Y)`` or replicate ``(XY..Y)`` columns.

Blocks written with the compressed ASDF forms (SQZ, DIF, DUP) are handed to
the ``jcamp`` package. Anything it cannot decode raises :class:`DecodeError`,
so callers never receive a partially decoded spectrum.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Dict, List, Optional, Protocol, Tuple

import jcamp
import numpy as np

from stack_app.engine.errors import DecodeError
from stack_app.engine.jcamp_model import NUMBER_RE, is_data_start, parse_document
from stack_app.engine.model import Spectrum

logger = logging.getLogger(__name__)

__all__ = ["CompressedBlock", "SpectrumDecoder", "decode_jcamp_text"]

COMMENT_RE = re.compile(r"\$\$.*$")
SEPARATOR_RE = re.compile(r"[\s,;?]+")
GROUP_RE = re.compile(r"\(\s*([A-Z]+)\s*\.\.\s*\1\s*\)")


class CompressedBlock(DecodeError):
    """A data line uses ASDF pseudo-digits instead of plain numbers."""


class SpectrumDecoder(Protocol):
    def __call__(self, text: str) -> List[Spectrum]:
        ...


def _parse_numeric(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        m = NUMBER_RE.search(str(value))
        if m:
            try:
                return float(m.group(0))
            except ValueError:
                return None
    return None


def _line_numbers(line: str) -> List[float]:
    text = COMMENT_RE.sub("", line)
    residual = SEPARATOR_RE.sub("", NUMBER_RE.sub(" ", text))
    if residual:
        raise CompressedBlock("Compressed (ASDF/SQZ/DIF) data line", source=line.strip()[:40])
    return [float(n) for n in NUMBER_RE.findall(text)]


def _split_blocks(data_block: str) -> List[Dict[str, object]]:
    blocks: List[Dict[str, object]] = []
    current: Optional[Dict[str, object]] = None
    for raw in data_block.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("##"):
            if is_data_start(line):
                label, _, descriptor = line[2:].partition("=")
                current = {"label": label.strip().upper(), "descriptor": descriptor.strip(), "rows": []}
                blocks.append(current)
            else:
                current = None
            continue
        if current is None:
            continue
        nums = _line_numbers(line)
        if nums:
            current["rows"].append(nums)
    return blocks


def _expand_xpp_block(
    rows: List[List[float]], headers: Dict[str, str], xfactor: float, yfactor: float
) -> Tuple[np.ndarray, np.ndarray]:
    start_vals = [row[0] for row in rows if row]
    counts = [max(0, len(row) - 1) for row in rows]
    y_vals: List[float] = []
    for row in rows:
        y_vals.extend(row[1:])
    if not y_vals:
        raise DecodeError("No Y data found in XYDATA block")

    firstx = _parse_numeric(headers.get("FIRSTX"))
    deltax = _parse_numeric(headers.get("DELTAX"))
    npoints_raw = _parse_numeric(headers.get("NPOINTS"))
    npoints = int(round(npoints_raw)) if npoints_raw is not None else len(y_vals)

    if firstx is None and start_vals:
        firstx = start_vals[0] * xfactor
    if deltax is None and len(start_vals) > 1:
        deltas = [
            (start_vals[i + 1] - start_vals[i]) * xfactor / counts[i]
            for i in range(len(start_vals) - 1)
            if counts[i] > 0
        ]
        if deltas:
            deltax = float(np.median(deltas))
    if deltax is None:
        lastx = _parse_numeric(headers.get("LASTX"))
        if lastx is not None and firstx is not None and npoints > 1:
            deltax = (lastx - firstx) / (npoints - 1)
    if deltax is None:
        deltax = 0.0 if npoints == 1 else None
    if deltax is None or firstx is None:
        raise DecodeError("Unable to determine the X axis of a compressed-X data block")
    if len(y_vals) < npoints:
        raise DecodeError(f"Y data shorter than NPOINTS ({len(y_vals)} < {npoints})")

    x = firstx + np.arange(npoints, dtype=float) * deltax
    y = np.asarray(y_vals[:npoints], dtype=float) * yfactor
    return x, y


def _group_block(rows: List[List[float]], group: int, xfactor: float, yfactor: float) -> Tuple[np.ndarray, np.ndarray]:
    flat = [v for row in rows for v in row]
    if len(flat) % group:
        raise DecodeError(f"Pair table has {len(flat)} values, not a multiple of {group}")
    table = np.asarray(flat, dtype=float).reshape(-1, group)
    return table[:, 0] * xfactor, table[:, 1] * yfactor


def _column_block(rows: List[List[float]], xfactor: float, yfactor: float) -> List[Tuple[np.ndarray, np.ndarray]]:
    max_cols = max(len(row) for row in rows)
    if max_cols < 2:
        raise DecodeError("Column data block has no Y column")
    out = []
    for col in range(1, max_cols):
        x_vals = [row[0] * xfactor for row in rows if len(row) > col]
        y_vals = [row[col] * yfactor for row in rows if len(row) > col]
        if y_vals:
            out.append((np.asarray(x_vals, dtype=float), np.asarray(y_vals, dtype=float)))
    return out


def _decode_compressed(text: str, base_meta: Dict[str, str]) -> List[Spectrum]:
    try:
        data = jcamp.jcamp_read(io.StringIO(text))
    except (ValueError, KeyError, IndexError, TypeError, ZeroDivisionError) as exc:
        raise DecodeError(f"Compressed data block could not be decoded: {exc}") from exc

    x = np.asarray(data.get("x", []), dtype=float).ravel()
    y = np.asarray(data.get("y", []), dtype=float).ravel()
    if y.size == 0 or x.shape != y.shape:
        raise DecodeError(f"Compressed data block decoded to {x.size} x and {y.size} y values")
    descriptor = str(data.get("xydata") or data.get("peak table") or "")
    meta = dict(base_meta, block="XYDATA", descriptor=descriptor, decoder="jcamp")
    logger.debug("Decoded %d compressed points via jcamp", y.size)
    return [Spectrum(x=x, y=y, meta=meta)]


def decode_jcamp_text(text: str) -> List[Spectrum]:
    """Decode every data block of a JCAMP-DX document into spectra."""

    document = parse_document(text)
    headers = document.metadata()
    xfactor = _parse_numeric(headers.get("XFACTOR")) or 1.0
    yfactor = _parse_numeric(headers.get("YFACTOR")) or 1.0
    base_meta = {
        "title": headers.get("TITLE", ""),
        "x_units": headers.get("XUNITS", ""),
        "y_units": headers.get("YUNITS", ""),
    }

    try:
        blocks = _split_blocks(document.data_block)
    except CompressedBlock:
        return _decode_compressed(text, base_meta)
    if not blocks:
        raise DecodeError("Document has no data block")

    spectra: List[Spectrum] = []
    for block in blocks:
        rows = block["rows"]
        if not rows:
            continue
        descriptor = str(block["descriptor"]).upper().replace(" ", "")
        meta = dict(base_meta, block=block["label"], descriptor=block["descriptor"])
        group = GROUP_RE.search(descriptor)
        if "X++" in descriptor:
            pairs = [_expand_xpp_block(rows, headers, xfactor, yfactor)]
        elif group:
            pairs = [_group_block(rows, len(group.group(1)), xfactor, yfactor)]
        else:
            pairs = _column_block(rows, xfactor, yfactor)
        spectra.extend(Spectrum(x=x, y=y, meta=dict(meta)) for x, y in pairs)

    if not spectra:
        raise DecodeError("No spectra decoded from data blocks")
    logger.debug("Decoded %d spectra from %d data blocks", len(spectra), len(blocks))
    return spectra

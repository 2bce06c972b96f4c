"""Editable JCAMP-DX documents.

A document is an ordered list of header entries followed by one opaque data
block. Header lines of the form ``##KEY=VALUE`` become :class:`MetadataEntry`
objects (with ``+``-prefixed or unprefixed continuation lines folded into a
multi-line value); every other header line is kept as a :class:`RawEntry`.
Everything from the first data-section label (``##XYDATA=``, ``##PEAK
TABLE=``, ``##XYPOINTS=``, ``##DATA TABLE=``) to the end of the file is kept
verbatim as the data block.

Entries that were read and not edited re-emit their original lines, so
serialising an untouched document reproduces its header text exactly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from stack_app.engine.errors import DecodeError
from stack_app.engine.model import Spectrum
from stack_app.engine.wavenumber_map import RangeCalibration

logger = logging.getLogger(__name__)

__all__ = [
    "DATA_START_PATTERNS",
    "MetadataEntry",
    "RawEntry",
    "HeaderEntry",
    "JcampDocument",
    "is_data_start",
    "parse_document",
    "serialize_document",
    "format_value",
    "format_affn_block",
    "decode_data_block_to_affn",
    "load_document",
    "save_document",
]

DATA_START_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"^##XYDATA=", r"^##PEAK TABLE=", r"^##XYPOINTS=", r"^##DATA TABLE=")
)
FIELD_RE = re.compile(r"^##([^=]+)=(.*)$")
CONTINUATION_RE = re.compile(r"^\s*\+")
NUMBER_RE = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")
LINE_SPLIT_RE = re.compile(r"\r?\n")

AFFN_PAIRS_PER_LINE = 5
DOCUMENT_ENCODING = "latin-1"


def is_data_start(line: str) -> bool:
    return any(pattern.match(line) for pattern in DATA_START_PATTERNS)


def _fold_field(lines: Sequence[str]) -> Tuple[str, str]:
    """Return ``(key, value)`` for a field line plus its continuation lines."""

    m = FIELD_RE.match(lines[0])
    if m is None:
        raise ValueError(f"Not a JCAMP field line: {lines[0]!r}")
    value = m.group(2).strip()
    parts = []
    for line in lines[1:]:
        if CONTINUATION_RE.match(line):
            cont = CONTINUATION_RE.sub("", line, count=1).rstrip()
        else:
            cont = line.rstrip()
        parts.append(cont if cont.strip() else "")
    # trailing blank lines separate fields, they are not part of the value
    while parts and not parts[-1]:
        parts.pop()
    for cont in parts:
        value = f"{value}\n{cont}" if value else cont
    return m.group(1).strip(), value


@dataclass(frozen=True)
class MetadataEntry:
    key: str
    value: str
    source_lines: Optional[Tuple[str, ...]] = field(default=None, compare=False, repr=False)

    def render(self) -> str:
        if self.source_lines and _fold_field(self.source_lines) == (self.key, self.value):
            return "\n".join(self.source_lines)
        first, *rest = self.value.split("\n")
        return "\n".join([f"##{self.key}={first}"] + [f"+{line}" for line in rest])


@dataclass(frozen=True)
class RawEntry:
    content: str

    def render(self) -> str:
        return self.content


HeaderEntry = Union[MetadataEntry, RawEntry]


def _parse_numeric(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        m = NUMBER_RE.search(str(value))
        return float(m.group(0)) if m else None


@dataclass
class JcampDocument:
    entries: List[HeaderEntry] = field(default_factory=list)
    data_block: str = ""

    def metadata(self) -> Dict[str, str]:
        """First value of each header key, keyed by upper-cased label."""

        values: Dict[str, str] = {}
        for entry in self.entries:
            if isinstance(entry, MetadataEntry):
                values.setdefault(entry.key.strip().upper(), entry.value)
        return values

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.metadata().get(key.strip().upper(), default)

    def set_value(self, key: str, value: str) -> None:
        """Edit the first ``key`` entry, or append a new one after the last header."""

        wanted = key.strip().upper()
        for idx, entry in enumerate(self.entries):
            if isinstance(entry, MetadataEntry) and entry.key.strip().upper() == wanted:
                self.entries[idx] = replace(entry, value=value, source_lines=None)
                return
        self.entries.append(MetadataEntry(key.strip(), value))

    @property
    def y_units(self) -> Optional[str]:
        return self.get("YUNITS")

    def declared_range(self, piecewise_break: Optional[float] = None) -> Optional[RangeCalibration]:
        """Wavenumber range declared by ``MINX``/``MAXX`` (or ``FIRSTX``/``LASTX``)."""

        meta = self.metadata()
        for lo_key, hi_key in (("MINX", "MAXX"), ("FIRSTX", "LASTX")):
            a, b = _parse_numeric(meta.get(lo_key)), _parse_numeric(meta.get(hi_key))
            if a is not None and b is not None and a != b:
                return RangeCalibration(min(a, b), max(a, b), piecewise_break)
        return None

    def with_data_block(self, data_block: str) -> "JcampDocument":
        return JcampDocument(entries=list(self.entries), data_block=data_block)

    def to_text(self) -> str:
        return serialize_document(self)


def parse_document(text: str) -> JcampDocument:
    lines = LINE_SPLIT_RE.split(text)
    entries: List[HeaderEntry] = []
    data_start: Optional[int] = None

    i = 0
    while i < len(lines):
        line = lines[i]
        if is_data_start(line):
            data_start = i
            break
        if FIELD_RE.match(line) is None:
            entries.append(RawEntry(line))
            i += 1
            continue
        j = i + 1
        while j < len(lines) and not lines[j].startswith("##") and not is_data_start(lines[j]):
            j += 1
        block = tuple(lines[i:j])
        key, value = _fold_field(block)
        entries.append(MetadataEntry(key, value, source_lines=block))
        i = j

    data_block = "\n".join(lines[data_start:]) if data_start is not None else ""
    return JcampDocument(entries=entries, data_block=data_block)


def _render_entry(entry: HeaderEntry) -> str:
    if isinstance(entry, MetadataEntry):
        return entry.render()
    if isinstance(entry, RawEntry):
        return entry.render()
    raise TypeError(f"Unsupported header entry: {entry!r}")


def serialize_document(document: JcampDocument) -> str:
    pieces = [_render_entry(entry) for entry in document.entries]
    pieces.append(document.data_block)
    return "\n".join(piece for piece in pieces if piece)


def format_value(value: float) -> str:
    v = float(value)
    if v.is_integer():
        return str(int(v))
    magnitude = abs(v)
    if magnitude < 1e-4 or magnitude >= 1e6:
        return f"{v:.6e}"
    return f"{v:.6f}".rstrip("0").rstrip(".")


def format_affn_block(x: Iterable[float], y: Iterable[float], pairs_per_line: int = AFFN_PAIRS_PER_LINE) -> str:
    """Format ``x``/``y`` as an ``(XY..XY)`` AFFN block terminated by ``##END=``."""

    xs = np.asarray(list(x) if not isinstance(x, np.ndarray) else x, dtype=float)
    ys = np.asarray(list(y) if not isinstance(y, np.ndarray) else y, dtype=float)
    if xs.shape != ys.shape:
        raise ValueError(f"x and y lengths differ ({xs.size} vs {ys.size})")
    lines = []
    for start in range(0, xs.size, pairs_per_line):
        chunk = zip(xs[start:start + pairs_per_line], ys[start:start + pairs_per_line])
        lines.append(" ".join(f"{format_value(xv)},{format_value(yv)}" for xv, yv in chunk))
    return "##XYPOINTS=(XY..XY)\n" + "\n".join(lines) + "\n##END="


SpectrumDecoderFn = Callable[[str], Sequence[Spectrum]]


def decode_data_block_to_affn(full_text: str, decoder: Optional[SpectrumDecoderFn] = None) -> Optional[str]:
    """Decode a document's data block and reformat it as plain ``x,y`` pairs.

    ``decoder`` receives the full document text and returns decoded spectra;
    the first one is reformatted. Returns ``None`` when decoding fails or
    yields no usable arrays.
    """

    if decoder is None:
        from stack_app.io.jcamp_decoder import decode_jcamp_text

        decoder = decode_jcamp_text
    try:
        spectra = list(decoder(full_text) or [])
    except DecodeError as exc:
        logger.warning("Data block could not be decoded: %s", exc)
        return None
    except Exception as exc:
        logger.warning("Decoder failed: %s", exc, exc_info=True)
        return None
    if not spectra:
        logger.warning("Decoder returned no spectra")
        return None

    first = spectra[0]
    x, y = getattr(first, "x", None), getattr(first, "y", None)
    x = np.asarray([] if x is None else x, dtype=float)
    y = np.asarray([] if y is None else y, dtype=float)
    if x.size == 0 or y.size == 0 or x.shape != y.shape:
        logger.warning("Decoded spectrum has no usable x/y arrays")
        return None
    return format_affn_block(x, y)


def load_document(path: Union[str, Path], encoding: str = DOCUMENT_ENCODING) -> JcampDocument:
    with open(path, "r", encoding=encoding, newline="") as handle:
        return parse_document(handle.read())


def save_document(document: JcampDocument, path: Union[str, Path], encoding: str = DOCUMENT_ENCODING) -> None:
    with open(path, "w", encoding=encoding, newline="\n") as handle:
        handle.write(serialize_document(document))

"""Load and store RGBA rasters addressed by path, ``file:``, ``data:`` or remote URIs."""

from __future__ import annotations

import base64
import binascii
import io
import logging
from pathlib import Path
from typing import Optional, Union
from urllib.error import URLError
from urllib.parse import unquote_to_bytes, urlparse
from urllib.request import url2pathname, urlopen

import numpy as np
from PIL import Image, UnidentifiedImageError

from stack_app.engine.errors import DecodeError
from stack_app.engine.model import as_rgba

logger = logging.getLogger(__name__)

RasterSource = Union[str, Path, bytes]

REMOTE_TIMEOUT_S = 30.0


def _describe(source: RasterSource) -> str:
    if isinstance(source, bytes):
        return f"<{len(source)} bytes>"
    text = str(source)
    if text.startswith("data:"):
        return text[:40] + "..."
    return text


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ValueError("data URI has no payload")
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=False)
    return unquote_to_bytes(payload)


def read_source_bytes(source: RasterSource) -> bytes:
    if isinstance(source, bytes):
        return source
    if isinstance(source, Path):
        return source.read_bytes()
    text = str(source)
    if text.startswith("data:"):
        return _decode_data_uri(text)
    scheme = urlparse(text).scheme.lower()
    if scheme in {"http", "https"}:
        with urlopen(text, timeout=REMOTE_TIMEOUT_S) as response:
            return response.read()
    if scheme == "file":
        return Path(url2pathname(urlparse(text).path)).read_bytes()
    return Path(text).read_bytes()


def load_raster(source: RasterSource) -> np.ndarray:
    """Decode ``source`` into a ``(height, width, 4)`` ``uint8`` array.

    Raises :class:`DecodeError` when the source cannot be read or is not a
    decodable image.
    """

    label = _describe(source)
    try:
        payload = read_source_bytes(source)
        with Image.open(io.BytesIO(payload)) as img:
            img.load()
            pixels = np.array(img.convert("RGBA"), dtype=np.uint8)
    except (OSError, URLError, UnidentifiedImageError, ValueError, binascii.Error) as exc:
        logger.warning("Failed to decode raster %s: %s", label, exc)
        raise DecodeError(f"Unable to decode raster image: {exc}", source=label) from exc
    logger.debug("Decoded raster %s (%dx%d)", label, pixels.shape[1], pixels.shape[0])
    return pixels


def encode_png(pixels: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(as_rgba(pixels)).save(buf, format="PNG")
    return buf.getvalue()


def to_data_uri(pixels: np.ndarray) -> str:
    return "data:image/png;base64," + base64.b64encode(encode_png(pixels)).decode("ascii")


def save_raster(pixels: np.ndarray, destination: Optional[Union[str, Path]] = None) -> str:
    """Encode ``pixels`` as PNG.

    Without a destination (or with ``"data:"``) the PNG is returned as a data
    URI; otherwise it is written to the given path and the path is returned.
    """

    if destination is None or str(destination) == "data:":
        return to_data_uri(pixels)
    path = Path(destination)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_png(pixels))
    return str(path)

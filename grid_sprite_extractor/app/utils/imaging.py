"""Image loading and PNG encoding helpers."""
from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import cv2
import numpy as np
import requests

LOGGER = logging.getLogger(__name__)

ImageSource = Union[np.ndarray, bytes, str, Path]

DATA_URL_PREFIX = "data:image/png;base64,"


class ImageLoadError(ValueError):
    """Raised when an image source cannot be turned into a non-empty RGBA buffer."""


def to_rgba(image: np.ndarray, *, bgr: bool = False) -> np.ndarray:
    """Normalise a grayscale, RGB(A) or BGR(A) array into uint8 RGBA."""

    if image.size == 0:
        raise ImageLoadError(f"Invalid image dimensions: {image.shape}")
    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.ndim != 3:
        raise ImageLoadError(f"Unsupported image array shape: {image.shape}")
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA if bgr else cv2.COLOR_RGB2RGBA)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA) if bgr else image.copy()
    raise ImageLoadError(f"Unsupported channel count: {channels}")


def decode_image(payload: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, ...) into RGBA."""

    buffer = np.frombuffer(payload, dtype=np.uint8)
    if buffer.size == 0:
        raise ImageLoadError("Empty image payload")
    decoded = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if decoded is None:
        raise ImageLoadError("Unable to decode image payload")
    return to_rgba(decoded, bgr=True)


def _read_data_url(url: str) -> bytes:
    header, _, data = url.partition(",")
    if ";base64" not in header:
        raise ImageLoadError("Only base64 data URLs are supported")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageLoadError(f"Invalid base64 data URL: {exc}") from exc


def _fetch_url(url: str, session: Optional[requests.Session], timeout: float) -> bytes:
    client = session or requests.Session()
    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ImageLoadError(f"Failed to fetch image {url}: {exc}") from exc
    finally:
        if session is None:
            client.close()
    return response.content


def load_image(
    source: ImageSource,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 30.0,
) -> np.ndarray:
    """Load an RGBA image from an array, bytes, path, http(s) URL or data URL."""

    if isinstance(source, np.ndarray):
        image = to_rgba(source)
    elif isinstance(source, (bytes, bytearray)):
        image = decode_image(bytes(source))
    elif isinstance(source, str) and source.startswith("data:"):
        image = decode_image(_read_data_url(source))
    elif isinstance(source, str) and source.startswith(("http://", "https://")):
        LOGGER.info("Fetching image from %s", source)
        image = decode_image(_fetch_url(source, session, timeout))
    else:
        path = Path(source).expanduser()
        if not path.is_file():
            raise ImageLoadError(f"Image file not found: {path}")
        image = decode_image(path.read_bytes())

    height, width = image.shape[:2]
    if width <= 0 or height <= 0:
        raise ImageLoadError(f"Invalid image dimensions: {width}x{height}")
    return image


def encode_png(image: np.ndarray) -> bytes:
    """Encode an RGBA array as PNG bytes, keeping the alpha channel."""

    success, buffer = cv2.imencode(".png", cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA))
    if not success:
        raise ValueError("PNG encoding failed")
    return buffer.tobytes()


def write_png(path: Path, image: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_png(image))
    return path


def to_data_url(image: np.ndarray) -> str:
    return DATA_URL_PREFIX + base64.b64encode(encode_png(image)).decode("ascii")


def solid_image(width: int, height: int, color: Sequence[int]) -> np.ndarray:
    """Return an opaque RGBA image filled with a single color."""

    rgba = list(color) + [255] * (4 - len(color))
    image = np.empty((height, width, 4), dtype=np.uint8)
    image[:, :] = rgba[:4]
    return image

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
import requests

from grid_sprite_extractor.app.utils.imaging import (
    ImageLoadError,
    encode_png,
    load_image,
    to_data_url,
    to_rgba,
)


def sample_rgba() -> np.ndarray:
    image = np.zeros((5, 7, 4), dtype=np.uint8)
    image[..., 0] = 200
    image[..., 1] = 100
    image[..., 2] = 50
    image[..., 3] = 255
    image[0, 0, 3] = 0
    return image


def test_load_image_from_path(tmp_path: Path) -> None:
    path = tmp_path / "grid.png"
    path.write_bytes(encode_png(sample_rgba()))

    image = load_image(path)

    assert np.array_equal(image, sample_rgba())
    assert np.array_equal(load_image(str(path)), sample_rgba())


def test_load_image_from_bytes_and_data_url() -> None:
    expected = sample_rgba()
    assert np.array_equal(load_image(encode_png(expected)), expected)
    assert np.array_equal(load_image(to_data_url(expected)), expected)


def test_load_image_converts_bgr_to_rgba() -> None:
    bgr = np.zeros((8, 8, 3), dtype=np.uint8)
    bgr[..., 2] = 255  # red in BGR order
    success, buffer = cv2.imencode(".png", bgr)
    assert success

    image = load_image(buffer.tobytes())

    assert image.shape == (8, 8, 4)
    assert tuple(image[3, 3]) == (255, 0, 0, 255)


def test_load_image_from_url_uses_session() -> None:
    response = MagicMock()
    response.content = encode_png(sample_rgba())
    response.raise_for_status.return_value = None
    session = MagicMock()
    session.get.return_value = response

    image = load_image("https://example.com/grid.png", session=session, timeout=5)

    session.get.assert_called_once_with("https://example.com/grid.png", timeout=5)
    assert np.array_equal(image, sample_rgba())
    session.close.assert_not_called()


def test_load_image_url_failure_raises_load_error() -> None:
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("offline")

    with pytest.raises(ImageLoadError):
        load_image("http://example.com/grid.png", session=session)


@pytest.mark.parametrize(
    "source",
    [
        b"",
        b"definitely not an image",
        "data:image/png;base64,@@@",
        "data:text/plain,hello",
        np.zeros((0, 5, 4), dtype=np.uint8),
    ],
)
def test_load_image_rejects_invalid_sources(source) -> None:
    with pytest.raises(ImageLoadError):
        load_image(source)


def test_load_image_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ImageLoadError):
        load_image(tmp_path / "nope.png")


def test_to_rgba_handles_gray_and_rgb() -> None:
    gray = np.full((2, 3), 9, dtype=np.uint8)
    assert tuple(to_rgba(gray)[0, 0]) == (9, 9, 9, 255)
    rgb = np.zeros((2, 2, 3), dtype=np.uint8)
    rgb[..., 0] = 10
    assert tuple(to_rgba(rgb)[1, 1]) == (10, 0, 0, 255)

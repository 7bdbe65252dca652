from __future__ import annotations

import numpy as np

from grid_sprite_extractor.app.models import DetectionBox, LetterboxedFrame
from grid_sprite_extractor.app.services.sprite_extractor import (
    clamp_box,
    estimate_background,
    extract,
    key_background,
)
from grid_sprite_extractor.app.utils.imaging import solid_image


def white_frame_with_square() -> LetterboxedFrame:
    pixels = solid_image(640, 640, (255, 255, 255))
    pixels[300:340, 300:340] = (200, 30, 30, 255)
    return LetterboxedFrame(pixels=pixels, scale=1.0, offset_x=0, offset_y=0)


def test_key_background_removes_flat_background() -> None:
    image = solid_image(20, 20, (250, 250, 250))
    image[5:15, 5:15] = (0, 120, 0, 255)

    keyed = key_background(image, tolerance=35, alpha_threshold=5)

    assert (keyed[5:15, 5:15, 3] == 255).all()
    assert keyed[0, 0, 3] == 0
    assert keyed[19, 10, 3] == 0
    assert int((keyed[:, :, 3] == 0).sum()) == 400 - 100
    # original untouched
    assert (image[:, :, 3] == 255).all()


def test_key_background_keeps_pixels_outside_tolerance() -> None:
    image = solid_image(4, 4, (255, 255, 255))
    image[1, 1] = (240, 240, 240, 255)  # distance^2 = 675 <= 35^2
    image[2, 2] = (225, 225, 225, 255)  # distance^2 = 2700 > 35^2

    keyed = key_background(image, tolerance=35, alpha_threshold=5)

    assert keyed[1, 1, 3] == 0
    assert keyed[2, 2, 3] == 255


def test_key_background_idempotent_on_transparent_image() -> None:
    image = np.zeros((12, 9, 4), dtype=np.uint8)
    image[:, :, :3] = 77
    keyed = key_background(image)
    assert np.array_equal(keyed, image)
    assert np.array_equal(key_background(keyed), keyed)


def test_estimate_background_ignores_transparent_corners() -> None:
    image = solid_image(10, 10, (0, 0, 0))
    image[0, 0] = (10, 20, 30, 0)
    image[0, 9] = (100, 100, 100, 255)
    image[9, 0] = (200, 100, 0, 255)
    image[9, 9] = (0, 100, 200, 2)

    assert estimate_background(image, alpha_threshold=5) == (150.0, 100.0, 50.0)


def test_estimate_background_defaults_to_white() -> None:
    image = np.zeros((3, 3, 4), dtype=np.uint8)
    assert estimate_background(image) == (255.0, 255.0, 255.0)


def test_extract_crops_box_and_keys_background() -> None:
    frame = white_frame_with_square()
    box = DetectionBox(x1=290, y1=290, x2=350, y2=350, score=0.9, class_id=0)

    sprite = extract(frame, box, tolerance=35, alpha_threshold=5, cell=(1, 0))

    assert sprite is not None
    assert (sprite.width, sprite.height) == (60, 60)
    assert sprite.cell == (1, 0)
    assert sprite.box is box
    alpha = sprite.pixels[:, :, 3]
    assert (alpha[10:50, 10:50] == 255).all()
    assert alpha[0, 0] == 0 and alpha[59, 59] == 0


def test_extract_clamps_to_frame() -> None:
    frame = white_frame_with_square()
    box = DetectionBox(x1=600, y1=-20, x2=700, y2=30, score=0.5, class_id=0)

    sprite = extract(frame, box)

    assert sprite is not None
    assert (sprite.width, sprite.height) == (40, 30)


def test_extract_normalises_swapped_corners() -> None:
    frame = white_frame_with_square()
    box = DetectionBox(x1=350, y1=350, x2=290, y2=290, score=0.5, class_id=0)
    assert clamp_box(box, 640, 640) == (290, 290, 350, 350)
    sprite = extract(frame, box)
    assert sprite is not None and sprite.pixels.shape == (60, 60, 4)


def test_extract_fractional_box_uses_rounded_size() -> None:
    frame = white_frame_with_square()
    box = DetectionBox(x1=10.4, y1=20.2, x2=30.6, y2=20.6, score=0.5, class_id=0)

    sprite = extract(frame, box)

    assert sprite is not None
    assert (sprite.width, sprite.height) == (20, 1)


def test_extract_skips_degenerate_boxes() -> None:
    frame = white_frame_with_square()
    outside = DetectionBox(x1=700, y1=700, x2=800, y2=800, score=0.9, class_id=0)
    flat = DetectionBox(x1=10, y1=10, x2=10, y2=50, score=0.9, class_id=0)
    assert extract(frame, outside) is None
    assert extract(frame, flat) is None


def test_extract_skips_non_finite_boxes() -> None:
    frame = white_frame_with_square()
    box = DetectionBox(x1=float("nan"), y1=10, x2=50, y2=50, score=0.9, class_id=0)
    assert extract(frame, box) is None

"""Aspect-preserving resize of a cell into the fixed detector frame."""
from __future__ import annotations

import math
from typing import Sequence

import cv2
import numpy as np

from ..models import LetterboxedFrame
from ..utils.imaging import solid_image

INPUT_WIDTH = 640
INPUT_HEIGHT = 640
WHITE = (255, 255, 255, 255)


def composite_over(foreground: np.ndarray, background: np.ndarray) -> np.ndarray:
    """Alpha-composite RGBA ``foreground`` over ``background`` of the same size."""

    alpha = foreground[:, :, 3:4].astype(np.float32) / 255.0
    back_alpha = background[:, :, 3:4].astype(np.float32) / 255.0
    out_alpha = alpha + back_alpha * (1.0 - alpha)
    rgb = foreground[:, :, :3] * alpha + background[:, :, :3] * back_alpha * (1.0 - alpha)
    rgb = np.divide(rgb, out_alpha, out=np.zeros_like(rgb), where=out_alpha > 0)
    out = np.concatenate([rgb, out_alpha * 255.0], axis=2)
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def letterbox(
    region: np.ndarray,
    target_width: int = INPUT_WIDTH,
    target_height: int = INPUT_HEIGHT,
    fill: Sequence[int] = WHITE,
) -> LetterboxedFrame:
    """Scale ``region`` to fit the target frame and pad the rest with ``fill``.

    Padding bands appear on at most two opposite sides. The scale and offsets are
    returned for debugging; callers keep working in frame coordinates.
    """

    src_height, src_width = region.shape[:2]
    if src_width <= 0 or src_height <= 0:
        raise ValueError(f"Cannot letterbox an empty region ({src_width}x{src_height})")

    scale = min(target_width / src_width, target_height / src_height)
    new_width = max(1, int(round(src_width * scale)))
    new_height = max(1, int(round(src_height * scale)))
    offset_x = math.floor((target_width - new_width) / 2)
    offset_y = math.floor((target_height - new_height) / 2)

    canvas = solid_image(target_width, target_height, fill)
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(region, (new_width, new_height), interpolation=interpolation)
    window = canvas[offset_y : offset_y + new_height, offset_x : offset_x + new_width]
    window[...] = composite_over(resized, window)

    return LetterboxedFrame(pixels=canvas, scale=scale, offset_x=offset_x, offset_y=offset_y)

"""Crop detections out of the letterboxed frame and key out their background."""
from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from ..models import CellIndex, DetectionBox, LetterboxedFrame, Sprite

LOGGER = logging.getLogger(__name__)

DEFAULT_BG_TOLERANCE = 30.0
DEFAULT_ALPHA_THRESHOLD = 10
WHITE_RGB = (255.0, 255.0, 255.0)


def estimate_background(image: np.ndarray, alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD) -> Tuple[float, float, float]:
    """Average RGB of the visible corner pixels, white when none are visible."""

    height, width = image.shape[:2]
    corners = image[[0, 0, height - 1, height - 1], [0, width - 1, 0, width - 1]]
    visible = corners[corners[:, 3] >= alpha_threshold]
    if not len(visible):
        return WHITE_RGB
    mean = visible[:, :3].astype(np.float64).mean(axis=0)
    return float(mean[0]), float(mean[1]), float(mean[2])


def key_background(
    image: np.ndarray,
    tolerance: float = DEFAULT_BG_TOLERANCE,
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD,
) -> np.ndarray:
    """Return a copy of ``image`` with background-colored pixels made transparent.

    The background is estimated from the four corners, so this only works for the
    flat backgrounds the composite images are generated with.
    """

    keyed = image.copy()
    if keyed.size == 0:
        return keyed
    background = np.array(estimate_background(keyed, alpha_threshold), dtype=np.float64)
    diff = keyed[:, :, :3].astype(np.float64) - background
    distance_sq = np.einsum("ijk,ijk->ij", diff, diff)
    transparent = (keyed[:, :, 3] < alpha_threshold) | (distance_sq <= tolerance * tolerance)
    keyed[transparent, 3] = 0
    return keyed


def clamp_box(box: DetectionBox, frame_width: int, frame_height: int) -> Tuple[float, float, float, float]:
    x1, x2 = sorted((box.x1, box.x2))
    y1, y2 = sorted((box.y1, box.y2))
    x1 = min(max(x1, 0.0), frame_width)
    x2 = min(max(x2, 0.0), frame_width)
    y1 = min(max(y1, 0.0), frame_height)
    y2 = min(max(y2, 0.0), frame_height)
    return x1, y1, x2, y2


def has_area(bounds: Sequence[float]) -> bool:
    x1, y1, x2, y2 = bounds
    return all(math.isfinite(value) for value in bounds) and x2 - x1 > 0 and y2 - y1 > 0


def crop_box(frame: np.ndarray, bounds: Sequence[float]) -> np.ndarray:
    """Crop float bounds into a buffer sized to the rounded box dimensions."""

    x1, y1, x2, y2 = bounds
    out_width = max(1, int(round(x2 - x1)))
    out_height = max(1, int(round(y2 - y1)))
    left, top = int(math.floor(x1)), int(math.floor(y1))
    right, bottom = int(math.ceil(x2)), int(math.ceil(y2))
    patch = frame[top:bottom, left:right]
    if patch.shape[1] != out_width or patch.shape[0] != out_height:
        patch = cv2.resize(patch, (out_width, out_height), interpolation=cv2.INTER_LINEAR)
    return np.ascontiguousarray(patch)


def extract(
    frame: LetterboxedFrame,
    box: DetectionBox,
    *,
    tolerance: float = DEFAULT_BG_TOLERANCE,
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD,
    cell: Optional[CellIndex] = None,
) -> Optional[Sprite]:
    """Cut ``box`` out of ``frame`` as a transparent sprite, or None if degenerate."""

    bounds = clamp_box(box, frame.width, frame.height)
    x1, y1, x2, y2 = bounds
    if not has_area(bounds):
        LOGGER.debug("Skipping degenerate box %s", box)
        return None
    crop = crop_box(frame.pixels, bounds)
    keyed = key_background(crop, tolerance=tolerance, alpha_threshold=alpha_threshold)
    return Sprite(pixels=keyed, box=box, cell=cell)

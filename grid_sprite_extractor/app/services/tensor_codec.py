"""Detector input encoding and raw output decoding."""
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Sequence

import numpy as np

from ..models import DetectionBox

LOGGER = logging.getLogger(__name__)

DEFAULT_CONF_THRESHOLD = 0.03
MIN_CHANNELS = 6
MIN_CHANNEL_MAJOR_DETECTIONS = 10


class TensorLayout(str, Enum):
    """Supported raw output layouts."""

    CHANNEL_MAJOR = "channel_major"  # [1, 4 + classes, N], YOLOv8 style
    DETECTION_MAJOR = "detection_major"  # [1, N, 5 + classes], YOLOv5 style
    UNRECOGNIZED = "unrecognized"


def encode(pixels: np.ndarray) -> np.ndarray:
    """Build a normalised [1, 3, H, W] float32 tensor from RGB(A) pixels."""

    rgb = pixels[:, :, :3].astype(np.float32) / 255.0
    return np.ascontiguousarray(rgb.transpose(2, 0, 1)[np.newaxis, ...])


def classify_layout(dims: Sequence[int]) -> TensorLayout:
    if len(dims) != 3 or dims[0] != 1:
        return TensorLayout.UNRECOGNIZED
    _, second, third = (int(value) for value in dims)
    if second >= MIN_CHANNELS and third > MIN_CHANNEL_MAJOR_DETECTIONS:
        return TensorLayout.CHANNEL_MAJOR
    if second > 0 and third >= MIN_CHANNELS:
        return TensorLayout.DETECTION_MAJOR
    return TensorLayout.UNRECOGNIZED


def decode_channel_major(output: np.ndarray, conf_threshold: float) -> List[DetectionBox]:
    rows = output[0]
    class_scores = rows[4:]
    best_class = np.argmax(class_scores, axis=0)
    best_score = class_scores[best_class, np.arange(rows.shape[1])]
    return _to_boxes(rows[0], rows[1], rows[2], rows[3], best_score, best_class, best_score, conf_threshold)


def decode_detection_major(output: np.ndarray, conf_threshold: float) -> List[DetectionBox]:
    rows = output[0]
    class_scores = rows[:, 5:]
    best_class = np.argmax(class_scores, axis=1)
    best_score = class_scores[np.arange(rows.shape[0]), best_class]
    score = rows[:, 4] * best_score
    return _to_boxes(rows[:, 0], rows[:, 1], rows[:, 2], rows[:, 3], best_score, best_class, score, conf_threshold)


def _to_boxes(
    x_center: np.ndarray,
    y_center: np.ndarray,
    width: np.ndarray,
    height: np.ndarray,
    best_class_score: np.ndarray,
    best_class: np.ndarray,
    score: np.ndarray,
    conf_threshold: float,
) -> List[DetectionBox]:
    # candidates with no positive class score have no class at all
    finite = np.isfinite(x_center) & np.isfinite(y_center) & np.isfinite(width) & np.isfinite(height)
    keep = finite & (best_class_score > 0) & (score >= conf_threshold)
    boxes: List[DetectionBox] = []
    for i in np.flatnonzero(keep):
        half_w = float(width[i]) / 2
        half_h = float(height[i]) / 2
        cx = float(x_center[i])
        cy = float(y_center[i])
        boxes.append(
            DetectionBox(
                x1=cx - half_w,
                y1=cy - half_h,
                x2=cx + half_w,
                y2=cy + half_h,
                score=float(score[i]),
                class_id=int(best_class[i]),
            )
        )
    return boxes


def decode(output: np.ndarray, conf_threshold: float = DEFAULT_CONF_THRESHOLD) -> List[DetectionBox]:
    """Decode a raw detector output into thresholded corner-form boxes.

    Unsupported shapes decode to an empty list rather than raising.
    """

    output = np.asarray(output, dtype=np.float32)
    layout = classify_layout(output.shape)
    if layout is TensorLayout.CHANNEL_MAJOR:
        LOGGER.debug("Decoding output %s as channel-major", output.shape)
        return decode_channel_major(output, conf_threshold)
    if layout is TensorLayout.DETECTION_MAJOR:
        LOGGER.debug("Decoding output %s as detection-major", output.shape)
        return decode_detection_major(output, conf_threshold)
    LOGGER.warning("Output dims %s not recognised, skipping", output.shape)
    return []

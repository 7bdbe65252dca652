"""Class-aware non-maximum suppression."""
from __future__ import annotations

from typing import Iterable, List

from ..models import DetectionBox

DEFAULT_IOU_THRESHOLD = 0.85


def iou(a: DetectionBox, b: DetectionBox) -> float:
    """Intersection over union of two corner-form boxes."""

    inter_w = max(0.0, min(a.x2, b.x2) - max(a.x1, b.x1))
    inter_h = max(0.0, min(a.y2, b.y2) - max(a.y1, b.y1))
    intersection = inter_w * inter_h
    union = a.area + b.area - intersection
    if union <= 0:
        return 0.0
    return min(1.0, intersection / union)


def nms(boxes: Iterable[DetectionBox], iou_threshold: float = DEFAULT_IOU_THRESHOLD) -> List[DetectionBox]:
    """Greedy NMS; boxes only suppress lower-scored boxes of the same class."""

    remaining = sorted(boxes, key=lambda box: box.score, reverse=True)
    kept: List[DetectionBox] = []
    while remaining:
        candidate = remaining.pop(0)
        kept.append(candidate)
        remaining = [
            box
            for box in remaining
            if box.class_id != candidate.class_id or iou(candidate, box) <= iou_threshold
        ]
    return kept


def filter_by_confidence(boxes: Iterable[DetectionBox], conf_threshold: float) -> List[DetectionBox]:
    return [box for box in boxes if box.score >= conf_threshold]


def select_top(boxes: Iterable[DetectionBox], limit: int) -> List[DetectionBox]:
    """Highest-scoring ``limit`` boxes, best first."""

    return sorted(boxes, key=lambda box: box.score, reverse=True)[: max(0, limit)]


def suppress(
    boxes: Iterable[DetectionBox],
    *,
    conf_threshold: float,
    iou_threshold: float,
    limit: int,
) -> List[DetectionBox]:
    candidates = filter_by_confidence(boxes, conf_threshold)
    return select_top(nms(candidates, iou_threshold), limit)

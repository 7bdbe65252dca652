from __future__ import annotations

import itertools

import pytest

from grid_sprite_extractor.app.models import DetectionBox
from grid_sprite_extractor.app.services.suppressor import iou, nms, select_top, suppress


def make_box(x1: float, y1: float, x2: float, y2: float, score: float = 0.5, class_id: int = 0) -> DetectionBox:
    return DetectionBox(x1=x1, y1=y1, x2=x2, y2=y2, score=score, class_id=class_id)


SAMPLE_BOXES = [
    make_box(0, 0, 10, 10),
    make_box(5, 5, 15, 15),
    make_box(20, 20, 30, 40),
    make_box(0, 0, 100, 100),
    make_box(3, 3, 3, 9),  # zero width
    make_box(9, 0, 12, 10),
]


@pytest.mark.parametrize("a,b", list(itertools.product(SAMPLE_BOXES, repeat=2)))
def test_iou_symmetric_and_bounded(a: DetectionBox, b: DetectionBox) -> None:
    value = iou(a, b)
    assert value == iou(b, a)
    assert 0.0 <= value <= 1.0


@pytest.mark.parametrize("box", [b for b in SAMPLE_BOXES if b.area > 0])
def test_iou_with_itself_is_one(box: DetectionBox) -> None:
    assert iou(box, box) == 1.0


def test_iou_known_values() -> None:
    assert iou(make_box(0, 0, 10, 10), make_box(5, 0, 15, 10)) == pytest.approx(50 / 150)
    assert iou(make_box(0, 0, 10, 10), make_box(20, 20, 30, 30)) == 0.0
    assert iou(make_box(3, 3, 3, 3), make_box(3, 3, 3, 3)) == 0.0


def test_nms_keeps_higher_score_of_heavy_overlap() -> None:
    # second box is 1px narrower: IoU = 95 / 100
    best = make_box(0, 0, 100, 100, score=0.9)
    other = make_box(0, 0, 95, 100, score=0.8)
    assert iou(best, other) == pytest.approx(0.95)

    kept = nms([other, best], iou_threshold=0.85)

    assert kept == [best]


def test_nms_ignores_overlap_across_classes() -> None:
    a = make_box(0, 0, 100, 100, score=0.9, class_id=0)
    b = make_box(0, 0, 100, 100, score=0.8, class_id=1)
    assert nms([a, b], iou_threshold=0.5) == [a, b]


def test_nms_keeps_moderate_overlap_under_threshold() -> None:
    a = make_box(0, 0, 10, 10, score=0.6)
    b = make_box(5, 0, 15, 10, score=0.7)
    assert nms([a, b], iou_threshold=0.85) == [b, a]


def test_nms_is_idempotent() -> None:
    boxes = [
        make_box(0, 0, 100, 100, score=0.9),
        make_box(2, 2, 100, 100, score=0.85),
        make_box(50, 50, 150, 150, score=0.7),
        make_box(0, 0, 100, 100, score=0.6, class_id=3),
        make_box(300, 300, 320, 330, score=0.2),
        make_box(301, 300, 320, 330, score=0.1),
    ]
    once = nms(boxes, iou_threshold=0.85)
    twice = nms(once, iou_threshold=0.85)
    assert twice == once
    assert len(once) == 4


def test_nms_empty() -> None:
    assert nms([]) == []


def test_select_top_orders_and_truncates() -> None:
    boxes = [make_box(0, 0, 1, 1, score=s) for s in (0.2, 0.9, 0.5)]
    assert [box.score for box in select_top(boxes, 2)] == [0.9, 0.5]
    assert select_top(boxes, 0) == []


def test_suppress_filters_then_caps() -> None:
    boxes = [
        make_box(0, 0, 10, 10, score=0.01),
        make_box(100, 100, 110, 110, score=0.4),
        make_box(200, 200, 210, 210, score=0.6),
        make_box(200, 200, 210, 211, score=0.5),
    ]
    kept = suppress(boxes, conf_threshold=0.03, iou_threshold=0.85, limit=1)
    assert [box.score for box in kept] == [0.6]

"""Shared data models for the grid sprite extractor."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

CellIndex = Tuple[int, int]


@dataclass(frozen=True)
class Region:
    """Axis-aligned rectangle in source-image pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    def crop(self, image: np.ndarray) -> np.ndarray:
        """Return a copy of the pixels covered by this region."""

        return image[self.y : self.y2, self.x : self.x2].copy()


@dataclass(frozen=True)
class DetectionBox:
    """Corner-form detection in letterboxed frame coordinates."""

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x1": self.x1,
            "y1": self.y1,
            "x2": self.x2,
            "y2": self.y2,
            "score": self.score,
            "class_id": self.class_id,
        }


@dataclass
class LetterboxedFrame:
    pixels: np.ndarray
    scale: float
    offset_x: int
    offset_y: int

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass
class Sprite:
    """Background-keyed RGBA crop of a single detection."""

    pixels: np.ndarray
    box: DetectionBox
    cell: Optional[CellIndex] = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass
class DebugCell:
    row: int
    col: int
    cell_with_caption: np.ndarray
    cell_no_caption: np.ndarray
    letterbox: Optional[np.ndarray] = None


@dataclass
class DebugBundle:
    """Intermediate artifacts of a run, kept for inspection only."""

    title_removed: Optional[np.ndarray] = None
    cells: List[DebugCell] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.title_removed is None and not self.cells


@dataclass
class CellError:
    """Failure recorded for a single grid cell."""

    row: int
    col: int
    stage: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "col": self.col, "stage": self.stage, "message": self.message}


@dataclass
class CellResult:
    row: int
    col: int
    sprites: List[Sprite] = field(default_factory=list)
    detections: List[DetectionBox] = field(default_factory=list)
    debug: Optional[DebugCell] = None
    error: Optional[CellError] = None

    @property
    def index(self) -> int:
        return self.row * 2 + self.col


@dataclass
class PipelineResult:
    sprites: List[Sprite] = field(default_factory=list)
    detections: List[DetectionBox] = field(default_factory=list)
    debug: DebugBundle = field(default_factory=DebugBundle)
    errors: List[CellError] = field(default_factory=list)
    cancelled: bool = False

    @classmethod
    def empty(cls, *, cancelled: bool = False) -> "PipelineResult":
        return cls(cancelled=cancelled)

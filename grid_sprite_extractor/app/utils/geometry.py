"""Layout geometry for the title band over a 2x2 grid of captioned cells."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Tuple

from ..models import CellIndex, Region

TITLE_HEIGHT_RATIO = 0.10
CAPTION_STRIP_RATIO = 0.20
GRID_ROWS = 2
GRID_COLS = 2


@dataclass(frozen=True)
class GridGeometry:
    """Float region boundaries for one composite image."""

    image_width: int
    image_height: int
    title_height: float
    content_top: float
    content_height: float
    cell_width: float
    cell_height: float
    caption_strip_ratio: float = CAPTION_STRIP_RATIO

    @property
    def caption_height(self) -> float:
        return self.cell_height * self.caption_strip_ratio

    def cell_origin(self, row: int, col: int) -> Tuple[float, float]:
        return (col * self.cell_width, self.content_top + row * self.cell_height)

    def cell_region(self, row: int, col: int) -> Region:
        """Full cell including its caption strip, snapped to whole pixels."""

        x, y = self.cell_origin(row, col)
        return _snap(x, y, x + self.cell_width, y + self.cell_height)

    def detection_region(self, row: int, col: int) -> Region:
        """Cell with the bottom caption strip removed."""

        x, y = self.cell_origin(row, col)
        bottom = y + self.cell_height - self.caption_height
        return _snap(x, y, x + self.cell_width, bottom)

    def caption_line(self, row: int, col: int) -> int:
        """Row of the caption split inside the full cell crop."""

        cell = self.cell_region(row, col)
        return self.detection_region(row, col).y2 - cell.y

    def title_removed_region(self) -> Region:
        return _snap(0.0, self.title_height, float(self.image_width), float(self.image_height))


def compute_geometry(
    width: int,
    height: int,
    title_height_ratio: float = TITLE_HEIGHT_RATIO,
    caption_strip_ratio: float = CAPTION_STRIP_RATIO,
) -> GridGeometry:
    title_height = height * title_height_ratio
    content_top = title_height
    content_height = height - content_top
    return GridGeometry(
        image_width=width,
        image_height=height,
        title_height=title_height,
        content_top=content_top,
        content_height=content_height,
        cell_width=width / GRID_COLS,
        cell_height=content_height / GRID_ROWS,
        caption_strip_ratio=caption_strip_ratio,
    )


def iter_cells() -> Iterator[CellIndex]:
    """Yield (row, col) in aggregation order."""

    for row in range(GRID_ROWS):
        for col in range(GRID_COLS):
            yield row, col


def _snap(x1: float, y1: float, x2: float, y2: float) -> Region:
    left, top, right, bottom = (int(round(value)) for value in (x1, y1, x2, y2))
    return Region(x=left, y=top, width=right - left, height=bottom - top)

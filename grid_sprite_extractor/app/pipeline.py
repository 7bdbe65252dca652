"""Grid-cell detection and sprite extraction pipeline."""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import cv2
import numpy as np

from .config.settings import AppSettings, load_settings
from .models import CellError, CellResult, DebugBundle, DebugCell, LetterboxedFrame, PipelineResult
from .services.letterbox import letterbox
from .services.sprite_extractor import extract
from .services.suppressor import suppress
from .services.tensor_codec import decode, encode
from .utils.geometry import GridGeometry, compute_geometry, iter_cells
from .utils.imaging import ImageLoadError, ImageSource, load_image

LOGGER = logging.getLogger(__name__)

InferenceFn = Callable[[np.ndarray], Any]

CAPTION_LINE_COLOR = (255, 0, 0, 255)


class PipelineState(str, Enum):
    IDLE = "idle"
    LOAD_IMAGE = "load_image"
    PROCESS_CELLS = "process_cells"
    AGGREGATE = "aggregate"
    DONE = "done"
    CANCELLED = "cancelled"


class CellStage(str, Enum):
    CROP_REGIONS = "crop_regions"
    LETTERBOX = "letterbox"
    ENCODE = "encode"
    INFER = "infer"
    DECODE = "decode"
    SUPPRESS = "suppress"
    EXTRACT = "extract"


@dataclass
class PreparedCell:
    row: int
    col: int
    debug: DebugCell
    frame: Optional[LetterboxedFrame] = None
    tensor: Optional[np.ndarray] = None


class SpritePipeline:
    """Splits a composite grid image into transparent item sprites.

    ``infer`` receives a float32 ``[1, 3, H, W]`` tensor and returns the raw model
    output. Cells are independent; a failing cell contributes nothing and the run
    carries on. Results are always aggregated in (row, col) order.
    """

    def __init__(self, infer: InferenceFn, settings: Optional[AppSettings] = None, **overrides: object) -> None:
        self.infer = infer
        self.settings = settings.model_copy(update=overrides) if settings else load_settings(**overrides)
        self.state = PipelineState.IDLE

    def run(self, source: ImageSource, cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        image = self._load(source)
        if image is None:
            return PipelineResult.empty()
        geometry = self._geometry(image)

        self._set_state(PipelineState.PROCESS_CELLS)
        slots: List[Optional[CellResult]] = [None] * 4
        cells = list(enumerate(iter_cells()))
        if self.settings.max_workers <= 1:
            for index, (row, col) in cells:
                if _is_cancelled(cancel_event):
                    return self._cancelled()
                slots[index] = self._process_cell(image, geometry, row, col)
        else:
            with ThreadPoolExecutor(max_workers=min(self.settings.max_workers, len(cells))) as pool:
                futures = {
                    pool.submit(self._process_cell_unless_cancelled, image, geometry, row, col, cancel_event): index
                    for index, (row, col) in cells
                }
                for future in as_completed(futures):
                    slots[futures[future]] = future.result()

        if _is_cancelled(cancel_event):
            return self._cancelled()
        return self._aggregate(image, geometry, slots)

    async def arun(self, source: ImageSource, cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """Async variant accepting either a plain or a coroutine inference callable."""

        image = await asyncio.to_thread(self._load, source)
        if image is None:
            return PipelineResult.empty()
        geometry = self._geometry(image)

        self._set_state(PipelineState.PROCESS_CELLS)
        prepared = await asyncio.gather(
            *(asyncio.to_thread(self._prepare_cell, image, geometry, row, col) for row, col in iter_cells())
        )
        if _is_cancelled(cancel_event):
            return self._cancelled()
        slots = await asyncio.gather(*(self._run_cell_async(cell) for cell in prepared))

        if _is_cancelled(cancel_event):
            return self._cancelled()
        return self._aggregate(image, geometry, list(slots))

    def _set_state(self, state: PipelineState) -> None:
        LOGGER.debug("Pipeline state %s -> %s", self.state.value, state.value)
        self.state = state

    def _load(self, source: ImageSource) -> Optional[np.ndarray]:
        self._set_state(PipelineState.LOAD_IMAGE)
        try:
            image = load_image(source, timeout=self.settings.request_timeout)
        except ImageLoadError as exc:
            LOGGER.warning("Invalid input image: %s", exc)
            self._set_state(PipelineState.DONE)
            return None
        LOGGER.info("Loaded image %dx%d", image.shape[1], image.shape[0])
        return image

    def _geometry(self, image: np.ndarray) -> GridGeometry:
        height, width = image.shape[:2]
        return compute_geometry(
            width,
            height,
            title_height_ratio=self.settings.title_height_ratio,
            caption_strip_ratio=self.settings.caption_strip_ratio,
        )

    def _cancelled(self) -> PipelineResult:
        LOGGER.info("Pipeline run cancelled before aggregation")
        self._set_state(PipelineState.CANCELLED)
        return PipelineResult.empty(cancelled=True)

    def _prepare_cell(self, image: np.ndarray, geometry: GridGeometry, row: int, col: int) -> PreparedCell:
        _log_stage(row, col, CellStage.CROP_REGIONS)
        full_cell = geometry.cell_region(row, col).crop(image)
        annotated = full_cell.copy()
        line_y = geometry.caption_line(row, col)
        if annotated.size and 0 <= line_y < annotated.shape[0]:
            cv2.line(annotated, (0, line_y), (annotated.shape[1] - 1, line_y), CAPTION_LINE_COLOR, 2)
        no_caption = geometry.detection_region(row, col).crop(image)
        debug = DebugCell(row=row, col=col, cell_with_caption=annotated, cell_no_caption=no_caption)
        if no_caption.size == 0:
            LOGGER.warning("Cell (%d,%d) has an empty detection region", row, col)
            return PreparedCell(row=row, col=col, debug=debug)

        _log_stage(row, col, CellStage.LETTERBOX)
        frame = letterbox(
            no_caption,
            self.settings.input_width,
            self.settings.input_height,
            fill=self.settings.fill_color,
        )
        debug.letterbox = frame.pixels
        _log_stage(row, col, CellStage.ENCODE)
        return PreparedCell(row=row, col=col, debug=debug, frame=frame, tensor=encode(frame.pixels))

    def _call_infer(self, tensor: np.ndarray) -> Any:
        result = self.infer(tensor)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("Awaitable inference callables require SpritePipeline.arun")
        return result

    async def _call_infer_async(self, tensor: np.ndarray) -> Any:
        if inspect.iscoroutinefunction(self.infer):
            return await self.infer(tensor)
        result = await asyncio.to_thread(self.infer, tensor)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _process_cell(self, image: np.ndarray, geometry: GridGeometry, row: int, col: int) -> CellResult:
        cell = self._prepare_cell(image, geometry, row, col)
        if cell.tensor is None:
            return CellResult(row=row, col=col, debug=cell.debug)
        _log_stage(row, col, CellStage.INFER)
        try:
            raw = self._call_infer(cell.tensor)
        except Exception as exc:
            return self._failed(cell, CellStage.INFER, exc)
        return self._finish_cell(cell, raw)

    def _process_cell_unless_cancelled(
        self,
        image: np.ndarray,
        geometry: GridGeometry,
        row: int,
        col: int,
        cancel_event: Optional[threading.Event],
    ) -> Optional[CellResult]:
        if _is_cancelled(cancel_event):
            return None
        return self._process_cell(image, geometry, row, col)

    async def _run_cell_async(self, cell: PreparedCell) -> CellResult:
        if cell.tensor is None:
            return CellResult(row=cell.row, col=cell.col, debug=cell.debug)
        _log_stage(cell.row, cell.col, CellStage.INFER)
        try:
            raw = await self._call_infer_async(cell.tensor)
        except Exception as exc:
            return self._failed(cell, CellStage.INFER, exc)
        return await asyncio.to_thread(self._finish_cell, cell, raw)

    def _failed(self, cell: PreparedCell, stage: CellStage, exc: Exception) -> CellResult:
        LOGGER.exception("Cell (%d,%d) failed during %s", cell.row, cell.col, stage.value)
        error = CellError(row=cell.row, col=cell.col, stage=stage.value, message=str(exc) or type(exc).__name__)
        return CellResult(row=cell.row, col=cell.col, debug=cell.debug, error=error)

    def _finish_cell(self, cell: PreparedCell, raw: Any) -> CellResult:
        settings = self.settings
        _log_stage(cell.row, cell.col, CellStage.DECODE)
        try:
            candidates = decode(raw, settings.conf_threshold)
        except (TypeError, ValueError) as exc:
            return self._failed(cell, CellStage.DECODE, exc)
        LOGGER.info("Cell (%d,%d) raw boxes before NMS: %d", cell.row, cell.col, len(candidates))

        _log_stage(cell.row, cell.col, CellStage.SUPPRESS)
        boxes = suppress(
            candidates,
            conf_threshold=settings.conf_threshold,
            iou_threshold=settings.iou_threshold,
            limit=settings.per_cell_max_sprites,
        )
        LOGGER.info("Cell (%d,%d) boxes after NMS: %d", cell.row, cell.col, len(boxes))

        _log_stage(cell.row, cell.col, CellStage.EXTRACT)
        sprites = []
        kept = []
        try:
            for box in boxes:
                sprite = extract(
                    cell.frame,
                    box,
                    tolerance=settings.bg_tolerance,
                    alpha_threshold=settings.alpha_threshold,
                    cell=(cell.row, cell.col),
                )
                # degenerate boxes are dropped from the detections as well
                if sprite is not None:
                    sprites.append(sprite)
                    kept.append(box)
        except Exception as exc:
            return self._failed(cell, CellStage.EXTRACT, exc)
        return CellResult(row=cell.row, col=cell.col, sprites=sprites, detections=kept, debug=cell.debug)

    def _aggregate(self, image: np.ndarray, geometry: GridGeometry, slots: List[Optional[CellResult]]) -> PipelineResult:
        self._set_state(PipelineState.AGGREGATE)
        result = PipelineResult(debug=DebugBundle(title_removed=geometry.title_removed_region().crop(image)))
        for cell in sorted((slot for slot in slots if slot is not None), key=lambda slot: slot.index):
            result.sprites.extend(cell.sprites)
            result.detections.extend(cell.detections)
            if cell.debug is not None:
                result.debug.cells.append(cell.debug)
            if cell.error is not None:
                result.errors.append(cell.error)
        result.sprites = result.sprites[: self.settings.max_sprites]
        LOGGER.info(
            "Total sprites from grid: %d (detections=%d, failed cells=%d)",
            len(result.sprites),
            len(result.detections),
            len(result.errors),
        )
        self._set_state(PipelineState.DONE)
        return result


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _log_stage(row: int, col: int, stage: CellStage) -> None:
    LOGGER.debug("Cell (%d,%d) stage %s", row, col, stage.value)

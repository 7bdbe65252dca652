"""Persist sprites, detections and debug bundles."""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.settings import AppSettings
from ..models import DebugBundle, PipelineResult, Sprite
from ..utils.imaging import to_data_url, write_png

LOGGER = logging.getLogger(__name__)


@dataclass
class SpriteRecord:
    index: int
    filename: str
    width: int
    height: int
    box: Dict[str, Any]
    cell: Optional[List[int]] = None

    @classmethod
    def from_sprite(cls, index: int, sprite: Sprite) -> "SpriteRecord":
        return cls(
            index=index,
            filename=sprite_filename(index),
            width=sprite.width,
            height=sprite.height,
            box=sprite.box.to_dict(),
            cell=list(sprite.cell) if sprite.cell is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "filename": self.filename,
            "width": self.width,
            "height": self.height,
            "box": self.box,
            "cell": self.cell,
        }


def sprite_filename(index: int) -> str:
    return f"sprite_{index:02d}.png"


def reset_output_state(settings: AppSettings, *, include_debug: bool = False) -> None:
    """Remove persisted artifacts so the next run starts clean."""

    settings.output_dir.mkdir(parents=True, exist_ok=True)
    for artifact in settings.output_dir.iterdir():
        is_sprite = artifact.name.startswith("sprite_") and artifact.suffix == ".png"
        if artifact.is_file() and (is_sprite or artifact.name == settings.detections_filename):
            try:
                artifact.unlink()
                LOGGER.debug("Removed stale artifact %s", artifact)
            except OSError as exc:
                LOGGER.warning("Unable to remove artifact %s: %s", artifact, exc)

    if include_debug and settings.debug_dir.exists():
        shutil.rmtree(settings.debug_dir, ignore_errors=True)
        LOGGER.debug("Removed debug directory %s", settings.debug_dir)


class OutputManager:
    """Write pipeline results to the configured output directories."""

    def __init__(self, settings: AppSettings, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.settings = settings
        self.metadata: Dict[str, Any] = metadata or {}
        self.results_path = settings.output_dir / settings.detections_filename
        reset_output_state(settings, include_debug=settings.save_debug)

    def save(self, result: PipelineResult) -> Path:
        """Write sprites and detections.json, plus the debug bundle when enabled."""

        records = [self.save_sprite(index, sprite) for index, sprite in enumerate(result.sprites)]
        payload = {
            "schema_version": 1,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "metadata": self.metadata,
            "cancelled": result.cancelled,
            "sprites": [record.to_dict() for record in records],
            "detections": [box.to_dict() for box in result.detections],
            "errors": [error.to_dict() for error in result.errors],
        }
        with self.results_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        LOGGER.info("Wrote %d sprites and %d detections to %s", len(records), len(result.detections), self.results_path)

        if self.settings.save_debug:
            self.save_debug_bundle(result.debug)
        return self.results_path

    def save_sprite(self, index: int, sprite: Sprite) -> SpriteRecord:
        record = SpriteRecord.from_sprite(index, sprite)
        write_png(self.settings.output_dir / record.filename, sprite.pixels)
        return record

    def save_debug_bundle(self, bundle: DebugBundle) -> List[Path]:
        written: List[Path] = []
        base_dir = self.settings.debug_dir
        if bundle.title_removed is not None and bundle.title_removed.size:
            written.append(write_png(base_dir / "title_removed.png", bundle.title_removed))
        for cell in bundle.cells:
            cell_dir = base_dir / "cells" / f"r{cell.row}c{cell.col}"
            images = {
                "cell_with_caption.png": cell.cell_with_caption,
                "cell_no_caption.png": cell.cell_no_caption,
                "letterbox.png": cell.letterbox,
            }
            for name, image in images.items():
                if image is None or not image.size:
                    continue
                written.append(write_png(cell_dir / name, image))
        LOGGER.debug("Saved %d debug images under %s", len(written), base_dir)
        return written


def result_to_payload(result: PipelineResult, *, include_debug: bool = False) -> Dict[str, Any]:
    """JSON-ready view of a result with images as PNG data URLs."""

    payload: Dict[str, Any] = {
        "sprites": [to_data_url(sprite.pixels) for sprite in result.sprites],
        "detections": [box.to_dict() for box in result.detections],
        "errors": [error.to_dict() for error in result.errors],
        "cancelled": result.cancelled,
    }
    if include_debug:
        bundle = result.debug
        payload["debug"] = {
            "title_removed_url": _maybe_data_url(bundle.title_removed),
            "cells": [
                {
                    "row": cell.row,
                    "col": cell.col,
                    "cell_with_caption_url": _maybe_data_url(cell.cell_with_caption),
                    "cell_no_caption_url": _maybe_data_url(cell.cell_no_caption),
                    "letterbox_url": _maybe_data_url(cell.letterbox),
                }
                for cell in bundle.cells
            ],
        }
    return payload


def _maybe_data_url(image: Any) -> str:
    if image is None or not image.size:
        return ""
    return to_data_url(image)

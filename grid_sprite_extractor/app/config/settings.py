"""Configuration utilities for the grid sprite extractor."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Pipeline configuration sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(env_prefix="SPRITES_", case_sensitive=False, protected_namespaces=())

    model_path: Path = Field(default=Path("grid_sprite_extractor/models/yolov8n.onnx"), description="ONNX detector weights")
    providers: List[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    conf_threshold: float = Field(default=0.03, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    max_sprites: int = Field(default=4, ge=1)
    input_width: int = Field(default=640, gt=0)
    input_height: int = Field(default=640, gt=0)
    title_height_ratio: float = Field(default=0.10, ge=0.0, lt=1.0)
    caption_strip_ratio: float = Field(default=0.20, ge=0.0, lt=1.0)
    bg_tolerance: float = Field(default=35.0, ge=0.0)
    alpha_threshold: int = Field(default=5, ge=0, le=255)
    fill_color: List[int] = Field(default_factory=lambda: [255, 255, 255])
    max_workers: int = Field(default=1, ge=1, description="Cells processed concurrently.")
    request_timeout: float = Field(default=30.0, gt=0.0, description="Timeout for fetching image URLs.")
    output_dir: Path = Field(
        default=Path(__file__).resolve().parents[2] / "output" / "sprites",
        description="Directory for extracted sprites and detections.json.",
    )
    debug_dir: Path = Field(
        default=Path(__file__).resolve().parents[2] / "output" / "debug",
        description="Directory for debug bundle images.",
    )
    save_debug: bool = Field(default=False)
    detections_filename: str = Field(default="detections.json")
    log_format: str = Field(default="text")

    @field_validator("model_path", "output_dir", "debug_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return Path(value).expanduser()

    @field_validator("fill_color")
    @classmethod
    def _check_fill(cls, value: List[int]) -> List[int]:
        if len(value) not in (3, 4) or any(not 0 <= channel <= 255 for channel in value):
            raise ValueError("fill_color must hold 3 or 4 channel values in [0, 255]")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in {"text", "json"}:
            raise ValueError(f"Unsupported log format: {value}")
        return value

    @property
    def per_cell_max_sprites(self) -> int:
        return max(1, self.max_sprites // 4)


def read_config_file(path: Path) -> Dict[str, Any]:
    """Load settings overrides from a YAML mapping."""

    with Path(path).expanduser().open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return payload


def load_settings(config_file: Optional[Path] = None, **overrides: object) -> AppSettings:
    """Return application settings, applying the optional YAML file then overrides."""

    values: Dict[str, Any] = {}
    if config_file is not None:
        values.update(read_config_file(config_file))
    values.update(overrides)
    return AppSettings(**values)

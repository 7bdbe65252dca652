from __future__ import annotations

import json
from pathlib import Path

import numpy as np

from grid_sprite_extractor.app import detect
from grid_sprite_extractor.app.utils.imaging import encode_png, solid_image


class DummyDetector:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, tensor: np.ndarray) -> np.ndarray:
        self.calls += 1
        output = np.zeros((1, 6, 100), dtype=np.float32)
        output[0, 0:4, 0] = (320, 320, 60, 60)
        output[0, 4, 0] = 0.8
        return output

    @staticmethod
    def warm_up(model: "DummyDetector", tensors, limit: int = 2) -> None:
        for idx, tensor in enumerate(tensors):
            if idx >= limit:
                break
            model(tensor)


def test_run_extraction_smoke(tmp_path: Path, monkeypatch) -> None:
    image_path = tmp_path / "grid.png"
    image_path.write_bytes(encode_png(solid_image(300, 360, (250, 250, 250))))
    detector = DummyDetector()
    monkeypatch.setattr(detect, "build_detector", lambda settings: detector)

    args = detect.build_arg_parser().parse_args(
        [
            "--image",
            str(image_path),
            "--output-dir",
            str(tmp_path / "out"),
            "--debug-dir",
            str(tmp_path / "debug"),
            "--debug",
            "--max-sprites",
            "2",
            "--warmup",
            "1",
        ]
    )

    assert detect.run_extraction(args) == 0

    assert detector.calls == 5
    payload = json.loads((tmp_path / "out" / "detections.json").read_text())
    assert len(payload["sprites"]) == 2
    assert payload["metadata"]["source"] == str(image_path)
    assert (tmp_path / "out" / "sprite_00.png").exists()
    assert (tmp_path / "out" / "sprite_01.png").exists()
    assert not (tmp_path / "out" / "sprite_02.png").exists()
    assert (tmp_path / "debug" / "cells" / "r1c1" / "letterbox.png").exists()


def test_run_extraction_missing_image(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(detect, "build_detector", lambda settings: DummyDetector())
    args = detect.build_arg_parser().parse_args(
        ["--image", str(tmp_path / "missing.png"), "--output-dir", str(tmp_path / "out")]
    )
    assert detect.run_extraction(args) == 2


def test_resolve_settings_maps_arguments(tmp_path: Path) -> None:
    config = tmp_path / "sprites.yaml"
    config.write_text("iou_threshold: 0.6\nmax_workers: 2\n")
    args = detect.build_arg_parser().parse_args(
        ["--image", "x.png", "--config", str(config), "--conf", "0.2", "--workers", "4", "--log-format", "json"]
    )

    settings = detect.resolve_settings(args)

    assert settings.conf_threshold == 0.2
    assert settings.iou_threshold == 0.6
    assert settings.max_workers == 4
    assert settings.log_format == "json"

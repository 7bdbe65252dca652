#!/usr/bin/env python3
"""Download YOLOv8 weights and export them to the ONNX model used by the pipeline."""
from __future__ import annotations

import argparse
import shutil
from pathlib import Path

import requests

MODEL_URLS = {
    "n": "https://github.com/ultralytics/assets/releases/download/v0.0.0/yolov8n.pt",
    "s": "https://github.com/ultralytics/assets/releases/download/v0.0.0/yolov8s.pt",
    "m": "https://github.com/ultralytics/assets/releases/download/v0.0.0/yolov8m.pt",
}


def download_weights(url: str, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    response = requests.get(url, timeout=60)
    response.raise_for_status()
    target.write_bytes(response.content)
    print(f"Model weights downloaded to {target}")


def export_onnx(weights: Path, target: Path, imgsz: int, opset: int) -> Path:
    from ultralytics import YOLO

    exported = Path(YOLO(str(weights)).export(format="onnx", imgsz=imgsz, opset=opset, dynamic=False))
    target.parent.mkdir(parents=True, exist_ok=True)
    if exported.resolve() != target.resolve():
        shutil.move(str(exported), target)
    print(f"ONNX model written to {target}")
    return target


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prepare the ONNX detector for sprite extraction")
    parser.add_argument("--variant", choices=MODEL_URLS.keys(), default="n", help="YOLOv8 variant to download")
    parser.add_argument("--url", type=str, default=None, help="Model weights URL override")
    parser.add_argument("--weights-dir", type=Path, default=Path("grid_sprite_extractor/models"), help="Where to keep .pt weights")
    parser.add_argument("--output", type=Path, default=None, help="Destination .onnx path")
    parser.add_argument("--imgsz", type=int, default=640, help="Square input size baked into the export")
    parser.add_argument("--opset", type=int, default=12, help="ONNX opset version")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    url = args.url or MODEL_URLS[args.variant]
    weights = args.weights_dir / Path(url).name
    if not weights.exists():
        download_weights(url, weights)
    target = args.output or weights.with_suffix(".onnx")
    export_onnx(weights, target, args.imgsz, args.opset)


if __name__ == "__main__":
    main()

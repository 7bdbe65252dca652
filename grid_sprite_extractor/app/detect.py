"""Command line entry point for splitting a composite grid image into sprites."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import numpy as np

from .config.settings import AppSettings, load_settings
from .pipeline import SpritePipeline
from .services.output_writer import OutputManager
from .utils.imaging import ImageLoadError, load_image

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract transparent item sprites from a 2x2 grid image")
    parser.add_argument("--image", type=str, required=True, help="Image path, http(s) URL or data URL")
    parser.add_argument("--config", type=str, default=None, help="YAML file with settings overrides")
    parser.add_argument("--model", type=str, default=None, help="Path to ONNX detector weights")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS")
    parser.add_argument("--max-sprites", type=int, default=None, help="Maximum sprites across all cells")
    parser.add_argument("--workers", type=int, default=None, help="Cells processed concurrently")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for sprites and detections.json")
    parser.add_argument("--debug-dir", type=str, default=None, help="Directory for debug images")
    parser.add_argument("--debug", action="store_true", help="Save the debug bundle")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    parser.add_argument("--warmup", type=int, default=0, help="Number of warm-up inferences")
    return parser


def setup_logging(settings: AppSettings) -> None:
    log_level = logging.INFO
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=[handler])


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    overrides = {}
    if args.model:
        overrides["model_path"] = Path(args.model)
    if args.conf is not None:
        overrides["conf_threshold"] = args.conf
    if args.iou is not None:
        overrides["iou_threshold"] = args.iou
    if args.max_sprites is not None:
        overrides["max_sprites"] = args.max_sprites
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir)
    if args.debug_dir:
        overrides["debug_dir"] = Path(args.debug_dir)
    if args.debug:
        overrides["save_debug"] = True
    if args.log_format:
        overrides["log_format"] = args.log_format

    config_file = Path(args.config) if args.config else None
    return load_settings(config_file, **overrides)


def build_detector(settings: AppSettings):
    from .services.detector import OnnxDetector

    return OnnxDetector(settings.model_path, providers=settings.providers)


def warm_up_detector(detector, settings: AppSettings, count: int) -> None:
    if count <= 0:
        return
    LOGGER.info("Warming up detector with %d inferences", count)
    blank = np.ones((1, 3, settings.input_height, settings.input_width), dtype=np.float32)
    detector.warm_up(detector, (blank for _ in range(count)), limit=count)


def run_extraction(args: argparse.Namespace, cancel_event: Optional[threading.Event] = None) -> int:
    settings = resolve_settings(args)
    setup_logging(settings)

    LOGGER.info("Starting sprite extraction for %s", args.image)
    try:
        image = load_image(args.image, timeout=settings.request_timeout)
    except ImageLoadError as exc:
        LOGGER.error("Cannot load image: %s", exc)
        return 2

    detector = build_detector(settings)
    warm_up_detector(detector, settings, args.warmup)

    pipeline = SpritePipeline(detector, settings)
    result = pipeline.run(image, cancel_event=cancel_event)
    if result.cancelled:
        LOGGER.warning("Extraction cancelled; nothing written")
        return 1

    output_manager = OutputManager(
        settings,
        metadata={"source": args.image, "model_path": str(settings.model_path)},
    )
    output_manager.save(result)
    LOGGER.info("Sprite extraction completed with %d sprites", len(result.sprites))
    return 0


def main() -> None:
    parser = build_arg_parser()
    args = parser.parse_args()
    cancel_event = threading.Event()

    def handle_interrupt(signum: int, frame: Optional[object]) -> None:  # pragma: no cover - signal handling
        LOGGER.warning("Received interrupt signal (%d), cancelling run", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, handle_interrupt)
    sys.exit(run_extraction(args, cancel_event))


if __name__ == "__main__":  # pragma: no cover
    main()

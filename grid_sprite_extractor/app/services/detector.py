"""ONNX Runtime wrapper exposing the detector as a plain inference callable."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np

try:  # pragma: no cover - import guarded for environments without onnxruntime
    import onnxruntime as ort
except ImportError as exc:  # pragma: no cover
    raise ImportError(
        "onnxruntime is required to run the sprite detector. Install dependencies via "
        "`pip install -e .` before running detect.py."
    ) from exc

LOGGER = logging.getLogger(__name__)


class OnnxDetector:
    """Runs a YOLO-family ONNX export and returns its first raw output."""

    def __init__(self, model_path: Path, providers: Optional[Sequence[str]] = None) -> None:
        self.model_path = Path(model_path)
        if not self.model_path.is_file():
            raise FileNotFoundError(f"Detector model not found: {self.model_path}")
        LOGGER.info("Loading ONNX model from %s", self.model_path)
        self._session = ort.InferenceSession(
            str(self.model_path),
            providers=list(providers) if providers else ["CPUExecutionProvider"],
        )
        self.input_name = self._session.get_inputs()[0].name
        self.output_name = self._session.get_outputs()[0].name
        LOGGER.debug("Model input=%s output=%s", self.input_name, self.output_name)

    @property
    def input_shape(self) -> List[object]:
        return list(self._session.get_inputs()[0].shape)

    def __call__(self, tensor: np.ndarray) -> np.ndarray:
        outputs = self._session.run([self.output_name], {self.input_name: tensor.astype(np.float32, copy=False)})
        output = np.asarray(outputs[0])
        LOGGER.debug("Output dims: %s", output.shape)
        return output

    @staticmethod
    def warm_up(model: "OnnxDetector", tensors: Iterable[np.ndarray], limit: int = 2) -> None:
        """Optionally run a couple of dummy inputs to reduce first-call latency."""

        for idx, tensor in enumerate(tensors):
            if idx >= limit:
                break
            LOGGER.debug("Warming up model with tensor %d", idx)
            _ = model(tensor)

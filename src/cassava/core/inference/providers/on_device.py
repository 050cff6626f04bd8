"""On-device ONNX classifier.

Runs a bundled ONNX image model with onnxruntime. Requires the
``on-device`` extra (onnxruntime, numpy, Pillow); the imports are deferred
to ``initialize`` so the other strategies work without it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from cassava.core.errors import InferenceError, ModelNotReadyError
from cassava.core.inference.catalog import DiseaseCatalog
from cassava.core.inference.provider import BackendHealth, Diagnosis, build_diagnosis

logger = logging.getLogger(__name__)

IMAGE_SIZE = 224
_MEAN = (0.485, 0.456, 0.406)
_STD = (0.229, 0.224, 0.225)


def load_labels(path: str | Path) -> list[str]:
    """Read ``{"classes": [...]}`` (or a bare list) from a labels JSON file."""
    with open(Path(path).expanduser(), encoding="utf-8") as f:
        data = json.load(f)
    classes = data.get("classes") if isinstance(data, dict) else data
    if not isinstance(classes, list) or not classes:
        raise ModelNotReadyError(f"Labels file {path} has no class list")
    return [str(c) for c in classes]


class OnDeviceClassifier:
    """Classifies images locally; usable without connectivity."""

    strategy = "on_device"
    supports_offline = True

    def __init__(
        self,
        model_path: str,
        labels_path: str,
        *,
        catalog: DiseaseCatalog | None = None,
    ) -> None:
        self.model_path = model_path
        self.labels_path = labels_path
        self._catalog = catalog
        self._session: Any = None
        self._input_name = ""
        self._labels: list[str] = []

    async def initialize(self) -> None:
        if self._session is not None:
            return
        if not self.model_path or not self.labels_path:
            raise ModelNotReadyError("ONNX model path and labels path must be configured")
        try:
            import onnxruntime as ort
        except ImportError as exc:
            raise ModelNotReadyError(
                "onnxruntime is not installed; install the 'on-device' extra"
            ) from exc

        model_file = Path(self.model_path).expanduser()
        if not model_file.exists():
            raise ModelNotReadyError(f"ONNX model not found: {model_file}")

        self._labels = await asyncio.to_thread(load_labels, self.labels_path)
        try:
            session = await asyncio.to_thread(
                ort.InferenceSession, str(model_file), providers=["CPUExecutionProvider"]
            )
        except Exception as exc:  # onnxruntime errors are untyped
            raise ModelNotReadyError(f"Failed to load ONNX model: {exc}") from exc
        self._input_name = session.get_inputs()[0].name
        self._session = session
        logger.info(
            "On-device model loaded: %s (%d classes)", model_file.name, len(self._labels)
        )

    def is_ready(self) -> bool:
        return self._session is not None

    async def classify(self, image_ref: str) -> Diagnosis:
        if self._session is None:
            raise ModelNotReadyError("On-device model is not loaded")
        try:
            label, confidence = await asyncio.to_thread(self._predict, image_ref)
        except InferenceError:
            raise
        except OSError as exc:
            raise InferenceError(f"Cannot read image {image_ref}: {exc}") from exc
        except Exception as exc:  # onnxruntime and numpy errors are untyped
            raise InferenceError(f"On-device inference failed: {exc}") from exc
        return build_diagnosis(
            label,
            confidence,
            catalog=self._catalog,
            model_version=Path(self.model_path).stem,
        )

    def _predict(self, image_ref: str) -> tuple[str, float]:
        import numpy as np
        from PIL import Image

        with Image.open(Path(image_ref).expanduser()) as img:
            image = img.convert("RGB").resize((IMAGE_SIZE, IMAGE_SIZE))
            arr = np.asarray(image).astype(np.float32) / 255.0
        arr = (arr - np.array(_MEAN, dtype=np.float32)) / np.array(_STD, dtype=np.float32)
        arr = np.transpose(arr, (2, 0, 1))[np.newaxis, ...]

        logits = self._session.run(None, {self._input_name: arr})[0][0]
        probs = _softmax(np.asarray(logits, dtype=np.float32))
        index = int(np.argmax(probs))
        if index >= len(self._labels):
            raise InferenceError(
                f"Model produced class index {index} but only {len(self._labels)} labels are known"
            )
        return self._labels[index], float(probs[index])

    async def health_check(self) -> BackendHealth:
        if self.is_ready():
            return BackendHealth(status="online", latency_ms=0.0)
        return BackendHealth(status="offline", detail="model not loaded")

    async def aclose(self) -> None:
        self._session = None


def _softmax(logits: Any) -> Any:
    import numpy as np

    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)

"""
PyTorch Model Server Engine
===========================
Runs the persisted tire models behind the model server's HTTP API.

All artifacts are loaded once at start-up; a redeploy replaces the whole
process rather than swapping models in place.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import torch
import torch.nn.functional as F
from PIL import Image

from ..errors import NotFoundError, StorageError
from ..training.architectures import TASKS, TaskSpec, TireConvNet
from ..utils.preprocessing import ImagePreprocessor
from .analysis import clamp_tread_depth, utc_now_iso, wear_severity
from .model_registry import ModelManifest, ModelStore

logger = logging.getLogger(__name__)

# Regression head has no calibrated uncertainty yet
TREAD_DEPTH_CONFIDENCE = 0.85


class ModelServerEngine:
    """
    Holds loaded models and turns image bytes into analysis payloads.

    Only the parts backed by a loaded model appear in the payload; clients
    fill in the rest.
    """

    def __init__(
        self,
        model_store: ModelStore,
        device: str = "auto",
        max_bytes: int = 10 * 1024 * 1024,
    ):
        if device == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = device
        self.model_store = model_store
        self.max_bytes = max_bytes
        self._models: Dict[str, Tuple[TireConvNet, ModelManifest]] = {}
        self._preprocessors: Dict[int, ImagePreprocessor] = {}

    def load_all(self) -> Dict[str, bool]:
        """Load every task's artifact that exists; returns name -> loaded."""
        status = {}
        for task in TASKS.values():
            name = task.model_name
            if not self.model_store.exists(name):
                logger.warning(f"Model not found: {name}")
                status[name] = False
                continue
            try:
                self._models[name] = self.model_store.load(name, device=self.device)
                status[name] = True
                logger.info(f"Loaded {name} v{self._models[name][1].version}")
            except (NotFoundError, StorageError, RuntimeError) as e:
                logger.error(f"Failed to load {name}: {e}")
                status[name] = False
        logger.info(f"Models loaded: {sum(status.values())}/{len(status)} on {self.device}")
        return status

    @property
    def loaded_models(self) -> List[str]:
        return list(self._models)

    @property
    def is_ready(self) -> bool:
        return bool(self._models)

    def _preprocessor(self, image_size: int) -> ImagePreprocessor:
        if image_size not in self._preprocessors:
            self._preprocessors[image_size] = ImagePreprocessor(
                target_size=(image_size, image_size),
                max_bytes=self.max_bytes,
            )
        return self._preprocessors[image_size]

    def _forward(self, name: str, image: Image.Image) -> torch.Tensor:
        model, manifest = self._models[name]
        tensor = self._preprocessor(manifest.image_size).to_tensor(image).unsqueeze(0).to(self.device)
        with torch.no_grad():
            return model(tensor)[0].cpu()

    def _classify(self, task: TaskSpec, image: Image.Image) -> Tuple[str, float, Dict[str, float]]:
        probabilities = F.softmax(self._forward(task.model_name, image), dim=0)
        scores = {label: float(p) for label, p in zip(task.labels, probabilities)}
        label = max(scores, key=scores.get)
        return label, scores[label], scores

    def analyze_image(self, image_bytes: bytes) -> Dict[str, Any]:
        """
        Analyze one image with every loaded model.

        Raises:
            ImageDecodeError: bytes are not a decodable image
            PayloadTooLargeError: bytes exceed the size limit
        """
        start_time = time.time()
        image = self._preprocessor(224).decode(image_bytes)
        analysis: Dict[str, Any] = {}
        models_used = []
        tread_value: Optional[float] = None

        tread_task = TASKS["treadDepth"]
        if tread_task.model_name in self._models:
            raw = float(self._forward(tread_task.model_name, image)[0])
            tread_value = round(clamp_tread_depth(raw), 2)
            analysis["treadDepth"] = {
                "value": tread_value,
                "unit": "mm",
                "confidence": TREAD_DEPTH_CONFIDENCE,
            }
            models_used.append(tread_task.model_name)

        condition_task = TASKS["conditionClassifier"]
        if condition_task.model_name in self._models:
            label, confidence, scores = self._classify(condition_task, image)
            analysis["condition"] = {"label": label, "confidence": confidence, "scores": scores}
            models_used.append(condition_task.model_name)

        wear_task = TASKS["wearPattern"]
        if wear_task.model_name in self._models:
            pattern, confidence, _ = self._classify(wear_task, image)
            analysis["wearPattern"] = {
                "pattern": pattern,
                "confidence": confidence,
                "severity": wear_severity(pattern, tread_value),
            }
            models_used.append(wear_task.model_name)

        sizes = {manifest.image_size for _, manifest in self._models.values()}
        analysis["metadata"] = {
            "analyzedAt": utc_now_iso(),
            "imageSize": sizes.pop() if len(sizes) == 1 else 224,
            "processingTime": (time.time() - start_time) * 1000,
            "modelsUsed": models_used,
        }
        return analysis

    def model_info(self) -> Dict[str, Dict[str, Any]]:
        """Per-model load state and shapes."""
        info = {}
        for task in TASKS.values():
            entry = self._models.get(task.model_name)
            if entry is None:
                info[task.model_name] = {"loaded": False, "inputShape": None, "outputShape": None}
                continue
            manifest = entry[1]
            info[task.model_name] = {
                "loaded": True,
                "inputShape": manifest.input_shape,
                "outputShape": manifest.output_shape,
                "version": manifest.version,
                "dataSource": manifest.data_source,
            }
        return info

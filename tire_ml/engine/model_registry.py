"""
Model Store
===========
Persisted model artifacts, one active artifact per name.

Layout:
- models/{name}/model.json          - Manifest
- models/{name}/weights.pt          - PyTorch state dict
- models/.backups/{name}/           - Previous artifact, kept for manual restore
"""

import json
import logging
import shutil
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import torch

from ..errors import NotFoundError, StorageError
from ..training.architectures import TireConvNet, build_model, get_task

logger = logging.getLogger(__name__)

MANIFEST_FILE = "model.json"
WEIGHTS_FILE = "weights.pt"
BACKUP_DIR = ".backups"


@dataclass
class ModelManifest:
    """Information about a persisted model artifact."""
    name: str
    task: str
    version: int
    created_at: str
    image_size: int
    input_shape: List[Optional[int]]
    output_shape: List[Optional[int]]
    labels: List[str] = field(default_factory=list)
    architecture: Dict[str, Any] = field(default_factory=dict)
    data_source: str = "real"
    sample_count: int = 0
    metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "name": data["name"],
            "task": data["task"],
            "version": data["version"],
            "createdAt": data["created_at"],
            "imageSize": data["image_size"],
            "inputShape": data["input_shape"],
            "outputShape": data["output_shape"],
            "labels": data["labels"],
            "architecture": data["architecture"],
            "dataSource": data["data_source"],
            "sampleCount": data["sample_count"],
            "metrics": data["metrics"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelManifest":
        return cls(
            name=data["name"],
            task=data["task"],
            version=int(data.get("version", 1)),
            created_at=data.get("createdAt", ""),
            image_size=int(data["imageSize"]),
            input_shape=list(data.get("inputShape", [])),
            output_shape=list(data.get("outputShape", [])),
            labels=list(data.get("labels", [])),
            architecture=dict(data.get("architecture", {})),
            data_source=data.get("dataSource", "real"),
            sample_count=int(data.get("sampleCount", 0)),
            metrics=dict(data.get("metrics", {})),
        )


class ModelStore:
    """
    Reads and writes model artifacts.

    Saving a model replaces the active artifact of that name; the replaced
    artifact is copied to ``.backups/<name>`` first. Nothing restores it
    automatically.
    """

    def __init__(self, models_dir: Union[str, Path]):
        self.models_dir = Path(models_dir)

    def model_dir(self, name: str) -> Path:
        return self.models_dir / name

    def backup_dir(self, name: str) -> Path:
        return self.models_dir / BACKUP_DIR / name

    def exists(self, name: str) -> bool:
        directory = self.model_dir(name)
        return (directory / MANIFEST_FILE).exists() and (directory / WEIGHTS_FILE).exists()

    def list_models(self) -> List[ModelManifest]:
        """Manifests of every readable active artifact."""
        if not self.models_dir.exists():
            return []
        manifests = []
        for path in sorted(self.models_dir.iterdir()):
            if not path.is_dir() or path.name.startswith("."):
                continue
            try:
                manifests.append(self.load_manifest(path.name))
            except (NotFoundError, StorageError) as e:
                logger.warning(f"Skipping model directory {path.name}: {e}")
        return manifests

    def load_manifest(self, name: str, directory: Optional[Path] = None) -> ModelManifest:
        path = (directory or self.model_dir(name)) / MANIFEST_FILE
        if not path.exists():
            raise NotFoundError(f"Model not found: {name}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ModelManifest.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            raise StorageError(f"Unreadable manifest for {name}: {e}") from e

    def save(
        self,
        name: str,
        model: torch.nn.Module,
        image_size: int,
        data_source: str = "real",
        sample_count: int = 0,
        metrics: Optional[Dict[str, float]] = None,
        architecture: Optional[Dict[str, Any]] = None,
    ) -> ModelManifest:
        """Persist a trained model as the active artifact for ``name``."""
        task = get_task(name)
        directory = self.model_dir(name)

        previous_version = 0
        if self.exists(name):
            try:
                previous_version = self.load_manifest(name).version
            except StorageError as e:
                logger.warning(f"Previous manifest unreadable, restarting versioning: {e}")
            self._backup(name)

        manifest = ModelManifest(
            name=name,
            task=task.key,
            version=previous_version + 1,
            created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            image_size=image_size,
            input_shape=[None, 3, image_size, image_size],
            output_shape=[None, task.output_dim],
            labels=list(task.labels),
            architecture=architecture or {},
            data_source=data_source,
            sample_count=sample_count,
            metrics=dict(metrics or {}),
        )

        try:
            directory.mkdir(parents=True, exist_ok=True)
            state_dict = {k: v.detach().cpu() for k, v in model.state_dict().items()}
            torch.save(state_dict, directory / WEIGHTS_FILE)
            with open(directory / MANIFEST_FILE, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2)
        except OSError as e:
            raise StorageError(f"Failed to save model {name}: {e}") from e

        logger.info(f"Saved {name} v{manifest.version} ({data_source} data, {sample_count} samples)")
        return manifest

    def load(self, name: str, device: str = "cpu") -> Tuple[TireConvNet, ModelManifest]:
        """Rebuild the network for ``name`` and load its weights."""
        manifest = self.load_manifest(name)
        weights_path = self.model_dir(name) / WEIGHTS_FILE
        if not weights_path.exists():
            raise NotFoundError(f"Weights not found for model: {name}")

        model = build_model(get_task(manifest.task), image_size=manifest.image_size)
        try:
            state_dict = torch.load(weights_path, map_location=device, weights_only=True)
        except (OSError, RuntimeError) as e:
            raise StorageError(f"Failed to load weights for {name}: {e}") from e
        model.load_state_dict(state_dict)
        model.to(device)
        model.eval()
        return model, manifest

    def _backup(self, name: str) -> Path:
        backup = self.backup_dir(name)
        try:
            if backup.exists():
                shutil.rmtree(backup)
            backup.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(self.model_dir(name), backup)
        except OSError as e:
            raise StorageError(f"Failed to back up model {name}: {e}") from e
        logger.info(f"Model {name} backed up to {backup}")
        return backup

    def has_backup(self, name: str) -> bool:
        return (self.backup_dir(name) / MANIFEST_FILE).exists()

    def restore_previous(self, name: str) -> ModelManifest:
        """
        Put the backed-up artifact back in place.

        The artifact being replaced is discarded; restoring twice in a row
        raises ``NotFoundError``.
        """
        backup = self.backup_dir(name)
        if not self.has_backup(name):
            raise NotFoundError(f"No backup available for model: {name}")

        directory = self.model_dir(name)
        try:
            if directory.exists():
                shutil.rmtree(directory)
            shutil.move(str(backup), str(directory))
        except OSError as e:
            raise StorageError(f"Failed to restore model {name}: {e}") from e

        manifest = self.load_manifest(name)
        logger.info(f"Restored {name} to v{manifest.version}")
        return manifest

"""
Training Pipeline
=================
Trains one model per task on the sample store and persists the artifacts.

Training always produces an artifact: with too few labeled real samples it
falls back to synthetic data (logged at WARNING and recorded in the
manifest). ``InsufficientDataError`` is raised only when there is no real
data and synthetic data is disabled.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader, Dataset, random_split
from tqdm.auto import tqdm

from ..engine.model_registry import ModelStore
from ..errors import InsufficientDataError, TireMLError
from ..feedback.sample_store import SampleStore
from ..utils.preprocessing import ImagePreprocessor
from .architectures import TASKS, TaskSpec, build_model, describe_architecture, get_task
from .dataset import (
    SOURCE_REAL,
    SOURCE_SYNTHETIC,
    SampleImageDataset,
    SyntheticTireDataset,
    collect_labeled,
)

logger = logging.getLogger(__name__)


@dataclass
class TrainingConfig:
    """Configuration for model training."""
    image_size: int = 224
    regression_epochs: int = 50
    classification_epochs: int = 30
    batch_size: int = 32
    learning_rate: float = 1e-3
    validation_split: float = 0.2

    # Data sources
    min_real_samples: int = 10
    allow_synthetic: bool = True
    synthetic_samples: int = 1000
    test_fraction: float = 0.2  # Held out for evaluation, never trained on

    device: str = "auto"
    seed: int = 42

    @classmethod
    def from_settings(cls, settings) -> "TrainingConfig":
        return cls(
            image_size=settings.IMAGE_SIZE,
            regression_epochs=settings.REGRESSION_EPOCHS,
            classification_epochs=settings.CLASSIFICATION_EPOCHS,
            batch_size=settings.TRAINING_BATCH_SIZE,
            learning_rate=settings.LEARNING_RATE,
            validation_split=settings.VALIDATION_SPLIT,
            min_real_samples=settings.MIN_REAL_SAMPLES,
            allow_synthetic=settings.ALLOW_SYNTHETIC_DATA,
            synthetic_samples=settings.SYNTHETIC_SAMPLES,
            test_fraction=settings.TEST_FRACTION,
            device=settings.TRAINING_DEVICE,
            seed=settings.RANDOM_SEED,
        )

    def epochs_for(self, task: TaskSpec) -> int:
        return self.regression_epochs if task.is_regression else self.classification_epochs


@dataclass
class TrainingResult:
    """Record of one trained artifact."""
    task: str
    model_name: str
    version: int
    data_source: str
    sample_count: int
    epochs: int
    metrics: Dict[str, float] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "modelName": self.model_name,
            "version": self.version,
            "dataSource": self.data_source,
            "sampleCount": self.sample_count,
            "epochs": self.epochs,
            "metrics": dict(self.metrics),
            "durationSeconds": self.duration_seconds,
        }


@dataclass
class TrainingSummary:
    """Outcome of training every task."""
    results: Dict[str, TrainingResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": {key: result.to_dict() for key, result in self.results.items()},
            "failures": dict(self.failures),
        }


class TrainingPipeline:
    """Builds, trains and persists the tire models."""

    def __init__(
        self,
        store: SampleStore,
        model_store: ModelStore,
        config: Optional[TrainingConfig] = None,
    ):
        self.store = store
        self.model_store = model_store
        self.config = config or TrainingConfig()

        if self.config.device == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = self.config.device

        self.preprocessor = ImagePreprocessor(
            target_size=(self.config.image_size, self.config.image_size)
        )

    def _select_data(self, task: TaskSpec) -> Tuple[Dataset, str]:
        items = collect_labeled(self.store, task, held_out=False, test_fraction=self.config.test_fraction)

        if len(items) >= self.config.min_real_samples:
            logger.info(f"[{task.key}] Training on {len(items)} real samples")
            return SampleImageDataset(items, task, self.preprocessor), SOURCE_REAL

        if self.config.allow_synthetic and self.config.synthetic_samples > 0:
            logger.warning(
                f"[{task.key}] Only {len(items)} labeled real samples "
                f"(need {self.config.min_real_samples}), training on "
                f"{self.config.synthetic_samples} SYNTHETIC samples"
            )
            dataset = SyntheticTireDataset(
                task, self.config.synthetic_samples, self.config.image_size, seed=self.config.seed
            )
            return dataset, SOURCE_SYNTHETIC

        if items:
            logger.warning(f"[{task.key}] Synthetic data disabled, training on only {len(items)} real samples")
            return SampleImageDataset(items, task, self.preprocessor), SOURCE_REAL

        raise InsufficientDataError(
            f"No labeled samples for {task.key} and synthetic data is disabled",
            hint="Capture labeled photos or set ALLOW_SYNTHETIC_DATA=true.",
        )

    def _split(self, dataset: Dataset) -> Tuple[Dataset, Optional[Dataset]]:
        total = len(dataset)
        val_size = int(total * self.config.validation_split)
        if val_size == 0 or val_size == total:
            return dataset, None
        generator = torch.Generator().manual_seed(self.config.seed)
        train_set, val_set = random_split(dataset, [total - val_size, val_size], generator=generator)
        return train_set, val_set

    def _run_epoch(self, model, loader, criterion, task: TaskSpec, optimizer=None) -> Dict[str, float]:
        """One pass over ``loader``; trains when an optimizer is given."""
        training = optimizer is not None
        model.train(training)
        total_loss = 0.0
        total_error = 0.0
        correct = 0
        total = 0

        with torch.set_grad_enabled(training):
            for images, targets in tqdm(loader, desc="Train" if training else "Validate", leave=False):
                images = images.to(self.device)
                targets = targets.to(self.device)

                outputs = model(images)
                loss = criterion(outputs, targets)

                if training:
                    optimizer.zero_grad()
                    loss.backward()
                    optimizer.step()

                total_loss += loss.item() * targets.size(0)
                total += targets.size(0)
                if task.is_regression:
                    total_error += (outputs - targets).abs().sum().item()
                else:
                    correct += outputs.argmax(1).eq(targets).sum().item()

        if total == 0:
            return {"loss": 0.0}
        metrics = {"loss": total_loss / total}
        if task.is_regression:
            metrics["mae"] = total_error / total
        else:
            metrics["accuracy"] = correct / total
        return metrics

    def train(self, task_key: str) -> TrainingResult:
        """Train and persist the model for one task."""
        task = get_task(task_key)
        start_time = time.time()
        torch.manual_seed(self.config.seed)

        dataset, data_source = self._select_data(task)
        train_set, val_set = self._split(dataset)

        train_loader = DataLoader(train_set, batch_size=self.config.batch_size, shuffle=True)
        val_loader = DataLoader(val_set, batch_size=self.config.batch_size) if val_set is not None else None

        model = build_model(task, image_size=self.config.image_size).to(self.device)
        criterion = nn.MSELoss() if task.is_regression else nn.CrossEntropyLoss()
        optimizer = optim.Adam(model.parameters(), lr=self.config.learning_rate)

        epochs = self.config.epochs_for(task)
        logger.info(f"[{task.key}] Training {task.model_name}: {epochs} epochs on {self.device} ({data_source} data)")

        metrics: Dict[str, float] = {}
        for epoch in range(1, epochs + 1):
            train_metrics = self._run_epoch(model, train_loader, criterion, task, optimizer)
            metrics = dict(train_metrics)
            if val_loader is not None:
                val_metrics = self._run_epoch(model, val_loader, criterion, task)
                metrics.update({f"val_{name}": value for name, value in val_metrics.items()})
            logger.info(
                f"[{task.key}] Epoch {epoch}/{epochs} - "
                + ", ".join(f"{name}: {value:.4f}" for name, value in metrics.items())
            )

        manifest = self.model_store.save(
            task.model_name,
            model,
            image_size=self.config.image_size,
            data_source=data_source,
            sample_count=len(dataset),
            metrics=metrics,
            architecture=describe_architecture(task, self.config.image_size),
        )

        duration = time.time() - start_time
        logger.info(f"[{task.key}] Saved {task.model_name} v{manifest.version} in {duration:.1f}s")
        return TrainingResult(
            task=task.key,
            model_name=task.model_name,
            version=manifest.version,
            data_source=data_source,
            sample_count=len(dataset),
            epochs=epochs,
            metrics=metrics,
            duration_seconds=duration,
        )

    def train_all(self, task_keys: Optional[List[str]] = None) -> TrainingSummary:
        """
        Train every task. A failing task is recorded and the rest still run;
        if all of them fail, the last error is raised.
        """
        summary = TrainingSummary()
        last_error: Optional[Exception] = None
        for key in task_keys or list(TASKS):
            try:
                summary.results[key] = self.train(key)
            except (TireMLError, RuntimeError, OSError, ValueError) as e:
                logger.error(f"[{key}] Training failed: {e}")
                summary.failures[key] = str(e)
                last_error = e
        if last_error is not None and not summary.results:
            raise last_error
        return summary

"""
Evaluation Service
==================
Scores persisted models on held-out samples and writes evaluation reports.

Reports go to ``results/evaluation-<epoch-ms>.json``; the
``latest-evaluation-summary.json`` pointer is overwritten on every save.
A task without held-out data gets all-zero metrics instead of an error.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import torch
import torch.nn.functional as F
from torch.utils.data import DataLoader

from ..engine.analysis import clamp_tread_depth
from ..engine.model_registry import ModelStore
from ..errors import StorageError
from ..feedback.sample_store import SampleStore
from ..training.architectures import TASKS, TaskSpec, get_task
from ..training.dataset import SampleImageDataset, collect_labeled
from ..utils.preprocessing import ImagePreprocessor
from .metrics import classification_metrics, empty_metrics, regression_metrics

logger = logging.getLogger(__name__)

GOOD = "good"
NEEDS_IMPROVEMENT = "needs_improvement"
LATEST_SUMMARY_FILE = "latest-evaluation-summary.json"


@dataclass
class EvaluationConfig:
    """Thresholds and data split for evaluation."""
    accuracy_threshold: float = 0.8  # classifiers: good when accuracy > this
    mse_threshold: float = 1.0  # tread depth: good when mse < this
    overall_threshold: float = 0.75  # overall good when average accuracy > this
    recommendation_threshold: float = 0.7
    test_fraction: float = 0.2
    batch_size: int = 32
    device: str = "auto"

    @classmethod
    def from_settings(cls, settings) -> "EvaluationConfig":
        return cls(
            accuracy_threshold=settings.ACCURACY_THRESHOLD,
            mse_threshold=settings.MSE_THRESHOLD,
            test_fraction=settings.TEST_FRACTION,
            batch_size=settings.TRAINING_BATCH_SIZE,
            device=settings.TRAINING_DEVICE,
        )


@dataclass
class ModelEvaluation:
    """Metrics and status of one model."""
    task: str
    model_name: str
    metrics: Dict[str, Any]
    status: str
    model_version: Optional[int] = None

    @property
    def accuracy(self) -> Optional[float]:
        return self.metrics.get("accuracy")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modelName": self.model_name,
            "modelVersion": self.model_version,
            "metrics": dict(self.metrics),
            "status": self.status,
        }


@dataclass
class EvaluationReport:
    """Summary of one evaluation run."""
    timestamp: str
    models: Dict[str, ModelEvaluation] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def average_accuracy(self) -> float:
        return self.summary.get("averageAccuracy", 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "models": {key: evaluation.to_dict() for key, evaluation in self.models.items()},
            "summary": dict(self.summary),
            "recommendations": list(self.recommendations),
        }


class EvaluationService:
    """Evaluates the persisted tire models on held-out samples."""

    def __init__(
        self,
        store: SampleStore,
        model_store: ModelStore,
        results_dir: Union[str, Path],
        config: Optional[EvaluationConfig] = None,
    ):
        self.store = store
        self.model_store = model_store
        self.results_dir = Path(results_dir)
        self.config = config or EvaluationConfig()

        if self.config.device == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = self.config.device

    def _status(self, task: TaskSpec, metrics: Dict[str, Any], sample_count: int) -> str:
        if sample_count == 0:
            return NEEDS_IMPROVEMENT
        if task.is_regression:
            return GOOD if metrics["mse"] < self.config.mse_threshold else NEEDS_IMPROVEMENT
        return GOOD if metrics["accuracy"] > self.config.accuracy_threshold else NEEDS_IMPROVEMENT

    def evaluate_task(self, task_key: str) -> Optional[ModelEvaluation]:
        """Evaluate one model; None when no artifact exists for the task."""
        task = get_task(task_key)
        if not self.model_store.exists(task.model_name):
            logger.info(f"[{task.key}] No model to evaluate")
            return None

        model, manifest = self.model_store.load(task.model_name, device=self.device)
        items = collect_labeled(self.store, task, held_out=True, test_fraction=self.config.test_fraction)

        if not items:
            logger.warning(f"[{task.key}] No held-out test data, reporting empty metrics")
            metrics = empty_metrics(task.is_regression)
            metrics.update({"loss": 0.0, "sampleCount": 0})
            return ModelEvaluation(task.key, task.model_name, metrics, NEEDS_IMPROVEMENT, manifest.version)

        preprocessor = ImagePreprocessor(target_size=(manifest.image_size, manifest.image_size))
        loader = DataLoader(SampleImageDataset(items, task, preprocessor), batch_size=self.config.batch_size)

        total_loss = 0.0
        predictions: List[Any] = []
        actuals: List[Any] = []
        with torch.no_grad():
            for images, targets in loader:
                outputs = model(images.to(self.device)).cpu()
                if task.is_regression:
                    clamped = outputs.clamp(0.0, 10.0)
                    total_loss += F.mse_loss(clamped, targets, reduction="sum").item()
                    predictions.extend(clamp_tread_depth(v) for v in clamped.view(-1).tolist())
                    actuals.extend(targets.view(-1).tolist())
                else:
                    total_loss += F.cross_entropy(outputs, targets, reduction="sum").item()
                    predictions.extend(task.labels[i] for i in outputs.argmax(1).tolist())
                    actuals.extend(task.labels[i] for i in targets.tolist())

        if task.is_regression:
            metrics = regression_metrics(actuals, predictions)
        else:
            metrics = classification_metrics(actuals, predictions)
        metrics.update({"loss": total_loss / len(items), "sampleCount": len(items)})

        status = self._status(task, metrics, len(items))
        headline = f"MSE: {metrics['mse']:.4f}" if task.is_regression else f"Accuracy: {metrics['accuracy']:.2%}"
        logger.info(f"[{task.key}] {headline} on {len(items)} held-out samples ({status})")
        return ModelEvaluation(task.key, task.model_name, metrics, status, manifest.version)

    def evaluate_all(self) -> EvaluationReport:
        """Evaluate every task that has a model and build the report."""
        report = EvaluationReport(timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"))
        for key in TASKS:
            evaluation = self.evaluate_task(key)
            if evaluation is not None:
                report.models[key] = evaluation

        evaluations = list(report.models.values())
        accuracies = [e.accuracy for e in evaluations if e.accuracy is not None and e.accuracy > 0]
        losses = [e.metrics.get("loss", 0.0) for e in evaluations]
        average_accuracy = sum(accuracies) / len(accuracies) if accuracies else 0.0

        report.summary = {
            "averageAccuracy": average_accuracy,
            "averageLoss": sum(losses) / len(losses) if losses else 0.0,
            "modelCount": len(evaluations),
            "overallStatus": GOOD if average_accuracy > self.config.overall_threshold else NEEDS_IMPROVEMENT,
        }
        report.recommendations = self._recommendations(average_accuracy, evaluations)
        return report

    def _recommendations(self, average_accuracy: float, evaluations: List[ModelEvaluation]) -> List[str]:
        recommendations = []
        if average_accuracy < self.config.recommendation_threshold:
            recommendations += [
                "Consider collecting more training data",
                "Try different model architectures",
                "Experiment with data augmentation techniques",
            ]
        if any(e.accuracy is not None and e.accuracy < self.config.accuracy_threshold for e in evaluations):
            recommendations.append("Model may benefit from hyperparameter tuning")
        recommendations.append("Continue monitoring model performance in production")
        return recommendations

    def save_report(self, report: EvaluationReport) -> Path:
        """Write the report and overwrite the latest-summary pointer."""
        report_path = self.results_dir / f"evaluation-{int(time.time() * 1000)}.json"
        summary = {
            "timestamp": report.timestamp,
            "averageAccuracy": report.summary.get("averageAccuracy", 0.0),
            "overallStatus": report.summary.get("overallStatus", NEEDS_IMPROVEMENT),
            "recommendations": list(report.recommendations),
            "reportFile": report_path.name,
        }
        try:
            self.results_dir.mkdir(parents=True, exist_ok=True)
            with open(report_path, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2)
            with open(self.results_dir / LATEST_SUMMARY_FILE, "w", encoding="utf-8") as f:
                json.dump(summary, f, indent=2)
        except OSError as e:
            raise StorageError(f"Failed to save evaluation report: {e}") from e

        report.report_path = str(report_path)
        logger.info(f"Evaluation report saved: {report_path}")
        return report_path

    def run(self) -> EvaluationReport:
        """Evaluate all models and save the report."""
        report = self.evaluate_all()
        self.save_report(report)
        return report

    def load_latest_summary(self) -> Optional[Dict[str, Any]]:
        path = self.results_dir / LATEST_SUMMARY_FILE
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {path.name}: {e}")
            return None

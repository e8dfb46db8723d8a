"""Held-out evaluation of the persisted models."""
from .metrics import classification_metrics, regression_metrics, empty_metrics
from .evaluator import EvaluationConfig, EvaluationReport, EvaluationService, ModelEvaluation

__all__ = [
    "classification_metrics",
    "regression_metrics",
    "empty_metrics",
    "EvaluationConfig",
    "EvaluationReport",
    "EvaluationService",
    "ModelEvaluation",
]

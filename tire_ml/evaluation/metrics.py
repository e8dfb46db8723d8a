"""
Evaluation Metrics
==================
Regression and classification metrics for held-out evaluation.

Classification metrics are macro averages over the labels that appear in
either the targets or the predictions. A class with no predictions (or no
occurrences) contributes 0 to the average, never NaN.
"""

import math
from typing import Any, Dict, List, Sequence

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    mean_absolute_error,
    mean_squared_error,
    precision_recall_fscore_support,
    r2_score,
)


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


def regression_metrics(y_true: Sequence[float], y_pred: Sequence[float]) -> Dict[str, float]:
    """MSE, MAE, RMSE and R^2 against the sample mean."""
    if len(y_true) == 0:
        return empty_metrics(regression=True)
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)

    mse = mean_squared_error(y_true, y_pred)
    r2 = r2_score(y_true, y_pred) if len(y_true) > 1 else 0.0
    return {
        "mse": _finite(mse),
        "mae": _finite(mean_absolute_error(y_true, y_pred)),
        "rmse": _finite(math.sqrt(mse)),
        "r2": _finite(r2),
    }


def classification_metrics(y_true: Sequence[str], y_pred: Sequence[str]) -> Dict[str, Any]:
    """Accuracy, macro precision/recall/F1 and the confusion matrix."""
    if len(y_true) == 0:
        return empty_metrics(regression=False)

    labels: List[str] = sorted(set(y_true) | set(y_pred))
    precision, recall, f1, _ = precision_recall_fscore_support(
        y_true, y_pred, labels=labels, average="macro", zero_division=0
    )
    matrix = confusion_matrix(y_true, y_pred, labels=labels)
    return {
        "accuracy": _finite(accuracy_score(y_true, y_pred)),
        "precision": _finite(precision),
        "recall": _finite(recall),
        "f1Score": _finite(f1),
        "confusionMatrix": {
            "labels": labels,
            "matrix": matrix.tolist(),
        },
    }


def empty_metrics(regression: bool) -> Dict[str, Any]:
    """All-zero metrics for a task without test data."""
    if regression:
        return {"mse": 0.0, "mae": 0.0, "rmse": 0.0, "r2": 0.0}
    return {
        "accuracy": 0.0,
        "precision": 0.0,
        "recall": 0.0,
        "f1Score": 0.0,
        "confusionMatrix": {"labels": [], "matrix": []},
    }

"""
Model Architectures
===================
Task definitions and the shared convolutional network.

Every task uses the same backbone: three conv(3x3, same)/ReLU/max-pool(2)
blocks with 32, 64 and 128 filters, then dense 512 with dropout 0.5. The
regression head adds dense 256 with dropout 0.3 before a scalar output;
classifiers emit logits over their fixed label set.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import torch
import torch.nn as nn

from ..engine.analysis import CONDITION_LABELS, WEAR_PATTERNS

REGRESSION = "regression"
CLASSIFICATION = "classification"

CONV_FILTERS = (32, 64, 128)


@dataclass(frozen=True)
class TaskSpec:
    """One trainable task and the artifact name it is stored under."""
    key: str
    model_name: str
    kind: str
    labels: Tuple[str, ...] = ()

    @property
    def is_regression(self) -> bool:
        return self.kind == REGRESSION

    @property
    def output_dim(self) -> int:
        return 1 if self.is_regression else len(self.labels)


TASKS: Dict[str, TaskSpec] = {
    "treadDepth": TaskSpec("treadDepth", "tread-depth-model", REGRESSION),
    "conditionClassifier": TaskSpec(
        "conditionClassifier", "condition-classifier-model", CLASSIFICATION, tuple(CONDITION_LABELS)
    ),
    "wearPattern": TaskSpec(
        "wearPattern", "wear-pattern-model", CLASSIFICATION, tuple(WEAR_PATTERNS)
    ),
}

TASKS_BY_MODEL_NAME: Dict[str, TaskSpec] = {task.model_name: task for task in TASKS.values()}


def get_task(key_or_name: str) -> TaskSpec:
    """Look a task up by task key or artifact name."""
    if key_or_name in TASKS:
        return TASKS[key_or_name]
    if key_or_name in TASKS_BY_MODEL_NAME:
        return TASKS_BY_MODEL_NAME[key_or_name]
    raise KeyError(f"Unknown task: {key_or_name}. Known: {', '.join(TASKS)}")


class TireConvNet(nn.Module):
    """Conv backbone with a dense head; outputs raw values or logits."""

    def __init__(self, image_size: int = 224, output_dim: int = 1, regression: bool = True):
        super().__init__()
        if image_size % 8 != 0:
            raise ValueError(f"image_size must be divisible by 8, got {image_size}")

        layers = []
        in_channels = 3
        for filters in CONV_FILTERS:
            layers += [
                nn.Conv2d(in_channels, filters, kernel_size=3, padding=1),
                nn.ReLU(inplace=True),
                nn.MaxPool2d(2),
            ]
            in_channels = filters
        self.features = nn.Sequential(*layers)

        spatial = image_size // 8
        head = [
            nn.Flatten(),
            nn.Linear(in_channels * spatial * spatial, 512),
            nn.ReLU(inplace=True),
            nn.Dropout(0.5),
        ]
        last = 512
        if regression:
            head += [nn.Linear(512, 256), nn.ReLU(inplace=True), nn.Dropout(0.3)]
            last = 256
        head.append(nn.Linear(last, output_dim))
        self.head = nn.Sequential(*head)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.head(self.features(x))


def build_model(task: TaskSpec, image_size: int = 224) -> TireConvNet:
    return TireConvNet(image_size=image_size, output_dim=task.output_dim, regression=task.is_regression)


def describe_architecture(task: TaskSpec, image_size: int) -> Dict[str, Any]:
    """Architecture summary stored in the artifact manifest."""
    dense = [512, 256] if task.is_regression else [512]
    return {
        "type": "TireConvNet",
        "convFilters": list(CONV_FILTERS),
        "dense": dense,
        "dropout": [0.5, 0.3] if task.is_regression else [0.5],
        "outputActivation": "linear" if task.is_regression else "softmax",
        "imageSize": image_size,
    }

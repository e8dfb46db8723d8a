"""
Training Data
=============
Datasets built from the sample store, the held-out split, and the synthetic
fallback used when there are not enough real samples.
"""

import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import torch
from torch.utils.data import Dataset

from ..errors import ImageDecodeError
from ..feedback.records import TrainingSample
from ..feedback.sample_store import SampleStore
from ..utils.preprocessing import ImagePreprocessor
from .architectures import TaskSpec

logger = logging.getLogger(__name__)

SOURCE_REAL = "real"
SOURCE_SYNTHETIC = "synthetic"


def is_held_out(sample_id: str, test_fraction: float) -> bool:
    """
    Stable train/test assignment from the md5 of the sample id.

    A sample never moves between splits as the store grows.
    """
    bucket = int(hashlib.md5(sample_id.encode("utf-8")).hexdigest()[:8], 16) / 0xFFFFFFFF
    return bucket < test_fraction


def extract_target(sample: TrainingSample, task: TaskSpec) -> Optional[float]:
    """Training target for ``task``, or None when the sample lacks it."""
    labels = sample.labels
    if task.key == "treadDepth":
        return float(labels.tread_depth) if labels.tread_depth is not None else None
    value = labels.condition if task.key == "conditionClassifier" else labels.wear_pattern
    if value not in task.labels:
        return None
    return task.labels.index(value)


def collect_labeled(
    store: SampleStore,
    task: TaskSpec,
    held_out: bool,
    test_fraction: float,
) -> List[Tuple[Path, float]]:
    """(image path, target) pairs for one side of the split."""
    items = []
    for sample in store.iter_samples():
        if is_held_out(sample.id, test_fraction) != held_out:
            continue
        target = extract_target(sample, task)
        if target is None:
            continue
        image_path = store.image_path(sample.id)
        if not image_path.exists():
            continue
        items.append((image_path, target))
    return items


class SampleImageDataset(Dataset):
    """Dataset for loading stored sample images and their targets."""

    def __init__(
        self,
        items: List[Tuple[Path, float]],
        task: TaskSpec,
        preprocessor: ImagePreprocessor,
    ):
        self.items = list(items)
        self.task = task
        self.preprocessor = preprocessor

    def __len__(self):
        return len(self.items)

    def __getitem__(self, idx):
        image_path, target = self.items[idx]
        try:
            image = self.preprocessor.to_tensor(self.preprocessor.load_file(image_path))
        except (ImageDecodeError, FileNotFoundError) as e:
            logger.warning(f"Error loading {image_path}: {e}")
            size = self.preprocessor.target_size
            image = torch.zeros(3, size[0], size[1])
        return image, _target_tensor(self.task, target)


class SyntheticTireDataset(Dataset):
    """
    Random images with random labels.

    Deterministic per (seed, index). Tread depth targets are uniform in
    [1, 10] mm; class targets uniform over the task's labels.
    """

    def __init__(self, task: TaskSpec, count: int, image_size: int, seed: int = 42):
        self.task = task
        self.count = count
        self.image_size = image_size
        self.seed = seed

    def __len__(self):
        return self.count

    def __getitem__(self, idx):
        generator = torch.Generator().manual_seed(self.seed * 1_000_003 + idx)
        image = torch.rand(3, self.image_size, self.image_size, generator=generator)
        if self.task.is_regression:
            target = 1.0 + 9.0 * torch.rand(1, generator=generator).item()
        else:
            target = int(torch.randint(len(self.task.labels), (1,), generator=generator).item())
        return image, _target_tensor(self.task, target)


def _target_tensor(task: TaskSpec, target: float) -> torch.Tensor:
    if task.is_regression:
        return torch.tensor([float(target)], dtype=torch.float32)
    return torch.tensor(int(target), dtype=torch.long)

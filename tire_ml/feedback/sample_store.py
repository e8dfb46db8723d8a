"""
Sample Store
============
File-per-sample persistence of training samples.

Folder structure:
- images/{sample_id}.jpg   - 224x224 crop-to-cover JPEG copy of the photo
- labels/{sample_id}.json  - Sample record (labels, metadata, feedback)
"""

import json
import logging
import os
import re
import secrets
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from ..errors import NotFoundError, StorageError, ValidationError
from ..utils.preprocessing import ImagePreprocessor
from .records import TrainingSample

logger = logging.getLogger(__name__)

SAMPLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def new_sample_id(now: Optional[float] = None) -> str:
    """Generate ``sample_<epoch-ms>_<9 hex chars>``."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"sample_{millis}_{secrets.token_hex(5)[:9]}"


def validate_sample_id(sample_id: str) -> str:
    if not isinstance(sample_id, str) or not SAMPLE_ID_PATTERN.match(sample_id):
        raise ValidationError(f"Invalid sample id: {sample_id!r}")
    return sample_id


class SampleStore:
    """
    Durable storage for training samples.

    Writers to the same sample id are not serialized against each other;
    last write wins. The internal lock only keeps a single label file write
    from interleaving with another in this process.
    """

    def __init__(
        self,
        root_dir: Union[str, Path],
        image_size: int = 224,
        jpeg_quality: int = 95,
    ):
        self.root_dir = Path(root_dir)
        self.images_dir = self.root_dir / "images"
        self.labels_dir = self.root_dir / "labels"
        self.preprocessor = ImagePreprocessor(
            target_size=(image_size, image_size),
            jpeg_quality=jpeg_quality,
        )
        self._lock = threading.Lock()

    def ensure_directories(self):
        """Create the directory structure (idempotent)."""
        try:
            self.images_dir.mkdir(parents=True, exist_ok=True)
            self.labels_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create sample directories under {self.root_dir}: {e}") from e

    def image_path(self, sample_id: str) -> Path:
        return self.images_dir / f"{validate_sample_id(sample_id)}.jpg"

    def label_path(self, sample_id: str) -> Path:
        return self.labels_dir / f"{validate_sample_id(sample_id)}.json"

    def new_sample_id(self) -> str:
        return new_sample_id()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(self, sample: TrainingSample):
        """Serialize a sample to ``labels/<id>.json``."""
        path = self.label_path(sample.id)
        self.ensure_directories()
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with self._lock:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(sample.to_dict(), f, indent=2)
                os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write sample {sample.id}: {e}") from e
        logger.debug(f"Wrote sample {sample.id}")

    def write_image(self, sample_id: str, image_bytes: bytes) -> Path:
        """
        Resize the photo to the store's square size and save it as JPEG.

        Raises:
            ImageDecodeError: bytes are not a decodable image
            PayloadTooLargeError: bytes exceed the size limit
            StorageError: the file cannot be written
        """
        path = self.image_path(sample_id)
        jpeg = self.preprocessor.prepare_jpeg(image_bytes)
        self.ensure_directories()
        try:
            path.write_bytes(jpeg)
        except OSError as e:
            raise StorageError(f"Failed to write image for {sample_id}: {e}") from e
        return path

    def update(self, sample_id: str, mutator: Callable[[TrainingSample], None]) -> TrainingSample:
        """
        Read-modify-write a single sample.

        The mutator edits the sample in place; if it raises, nothing is
        written.
        """
        sample = self.read(sample_id)
        mutator(sample)
        self.write(sample)
        return sample

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, sample_id: str) -> TrainingSample:
        path = self.label_path(sample_id)
        if not path.exists():
            raise NotFoundError(f"Sample not found: {sample_id}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read sample {sample_id}: {e}") from e
        return TrainingSample.from_dict(data)

    def exists(self, sample_id: str) -> bool:
        return self.label_path(sample_id).exists()

    def list_ids(self) -> List[str]:
        """Sorted ids of every stored label file."""
        if not self.labels_dir.exists():
            return []
        return sorted(p.stem for p in self.labels_dir.glob("*.json"))

    def count(self) -> int:
        return len(self.list_ids())

    def count_images(self) -> int:
        if not self.images_dir.exists():
            return 0
        return sum(1 for _ in self.images_dir.glob("*.jpg"))

    def iter_samples(self) -> Iterator[TrainingSample]:
        """Yield every readable sample; unreadable label files are skipped."""
        for sample_id in self.list_ids():
            try:
                yield self.read(sample_id)
            except (StorageError, NotFoundError, ValidationError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable sample {sample_id}: {e}")

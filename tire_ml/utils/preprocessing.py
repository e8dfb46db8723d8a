"""
Image Preprocessing
===================
Decoding, crop-to-cover resizing, JPEG encoding and tensor conversion.

One fixed policy is used everywhere so that stored samples, inference
requests and training tensors agree:

- EXIF orientation applied, converted to RGB
- ``ImageOps.fit`` centered crop-to-cover, LANCZOS resampling
- JPEG re-encode without an optimize pass
- pixel values scaled to [0, 1], no mean/std normalization
"""

import io
import logging
from pathlib import Path
from typing import Tuple, Union

import torch
from torchvision.transforms import functional as TF
from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import ImageDecodeError, PayloadTooLargeError

logger = logging.getLogger(__name__)


class ImagePreprocessor:
    """
    Image preprocessing for sample storage, inference and training.

    Handles:
    - Image loading from bytes/file
    - Crop-to-cover resizing to a square target
    - JPEG encoding
    - Scaling to float arrays / tensors
    """

    def __init__(
        self,
        target_size: Tuple[int, int] = (224, 224),
        max_bytes: int = 10 * 1024 * 1024,
        jpeg_quality: int = 90,
    ):
        """
        Initialize preprocessor.

        Args:
            target_size: Target image size (H, W)
            max_bytes: Largest accepted encoded image
            jpeg_quality: Quality used by ``encode_jpeg``
        """
        self.target_size = target_size
        self.max_bytes = max_bytes
        self.jpeg_quality = jpeg_quality

    def check_payload(self, data: bytes):
        """Reject empty or oversized payloads before decoding."""
        if not data:
            raise ImageDecodeError("Empty image payload")
        if len(data) > self.max_bytes:
            raise PayloadTooLargeError(
                f"Image is {len(data)} bytes, limit is {self.max_bytes} bytes",
                hint="Resize or compress the photo before uploading.",
            )

    def decode(self, data: bytes) -> Image.Image:
        """Decode image bytes into an RGB PIL image."""
        self.check_payload(data)
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            img = ImageOps.exif_transpose(img)
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ImageDecodeError(f"Failed to decode image: {e}") from e
        if img.mode != "RGB":
            img = img.convert("RGB")
        return img

    def load_file(self, path: Union[str, Path]) -> Image.Image:
        """Load an image from disk as RGB."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        return self.decode(path.read_bytes())

    def resize_cover(self, image: Image.Image) -> Image.Image:
        """Crop-to-cover resize to the target size."""
        target_h, target_w = self.target_size
        if image.size == (target_w, target_h):
            return image
        return ImageOps.fit(
            image,
            (target_w, target_h),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )

    def encode_jpeg(self, image: Image.Image, quality: int = None) -> bytes:
        """Encode an RGB image as JPEG bytes."""
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality or self.jpeg_quality)
        return buffer.getvalue()

    def prepare_jpeg(self, data: bytes, quality: int = None) -> bytes:
        """Decode, resize and re-encode in one step."""
        return self.encode_jpeg(self.resize_cover(self.decode(data)), quality=quality)

    def to_tensor(self, image: Image.Image) -> "torch.Tensor":
        """Convert a resized image into a (C, H, W) float tensor."""
        return TF.to_tensor(self.resize_cover(image))

    def preprocess(self, data: bytes) -> "torch.Tensor":
        """
        Full preprocessing pipeline for model input.

        Returns:
            Tensor of shape (1, 3, H, W)
        """
        return self.to_tensor(self.decode(data)).unsqueeze(0)

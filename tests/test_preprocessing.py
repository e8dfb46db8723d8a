"""Tests for image preprocessing"""
# Location: tests/test_preprocessing.py

import io
import unittest

from PIL import Image

from tire_ml.errors import ImageDecodeError, PayloadTooLargeError
from tire_ml.utils.preprocessing import ImagePreprocessor

from .helpers import make_jpeg, make_png


class TestImagePreprocessor(unittest.TestCase):
    """Test suite for decode/resize/encode"""

    def setUp(self):
        self.preprocessor = ImagePreprocessor(target_size=(32, 32), max_bytes=200_000)

    def test_prepare_jpeg_is_square_target_size(self):
        jpeg = self.preprocessor.prepare_jpeg(make_jpeg(120, 60))
        image = Image.open(io.BytesIO(jpeg))
        self.assertEqual(image.format, "JPEG")
        self.assertEqual(image.size, (32, 32))

    def test_prepare_jpeg_is_deterministic(self):
        data = make_jpeg(80, 50, color=(10, 200, 30))
        self.assertEqual(self.preprocessor.prepare_jpeg(data), self.preprocessor.prepare_jpeg(data))

    def test_rgba_png_is_converted_to_rgb(self):
        image = self.preprocessor.decode(make_png(mode="RGBA"))
        self.assertEqual(image.mode, "RGB")

    def test_garbage_bytes_raise_decode_error(self):
        with self.assertRaises(ImageDecodeError):
            self.preprocessor.decode(b"definitely not an image")

    def test_empty_payload_raises_decode_error(self):
        with self.assertRaises(ImageDecodeError):
            self.preprocessor.decode(b"")

    def test_oversized_payload_is_rejected(self):
        small = ImagePreprocessor(max_bytes=10)
        with self.assertRaises(PayloadTooLargeError):
            small.decode(make_jpeg())

    def test_preprocess_tensor_shape_and_range(self):
        tensor = self.preprocessor.preprocess(make_jpeg(100, 100, color=(255, 255, 255)))
        self.assertEqual(tuple(tensor.shape), (1, 3, 32, 32))
        self.assertLessEqual(float(tensor.max()), 1.0)
        self.assertGreaterEqual(float(tensor.min()), 0.0)


if __name__ == '__main__':
    unittest.main()

"""Utilities module."""
from .preprocessing import ImagePreprocessor
from .logger import setup_logging, RequestLogger

__all__ = [
    "ImagePreprocessor",
    "setup_logging",
    "RequestLogger",
]

"""
Error Hierarchy
===============
Exceptions shared by the sample store, inference, training and pipeline code.

HTTP handlers map these to status codes; see ``fastapi_app.middleware``.
"""

import textwrap
from typing import Optional


class TireMLError(RuntimeError):
    """Base error for all tire ML failures."""

    status_code = 500

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        final_message = message
        if hint:
            final_message = f"{message}\n{self._format_hint(hint)}"
        super().__init__(final_message)
        self.message = message
        self.hint = hint

    @staticmethod
    def _format_hint(hint: str) -> str:
        return textwrap.indent(f"Hint: {hint}", prefix="  ")


class ValidationError(TireMLError):
    """Raised for bad caller input. Never retried."""

    status_code = 400


class ImageDecodeError(ValidationError):
    """Raised when image bytes cannot be decoded."""


class PayloadTooLargeError(TireMLError):
    """Raised when an uploaded image exceeds the configured size limit."""

    status_code = 413


class NotFoundError(TireMLError):
    """Raised when a sample, model or report does not exist."""

    status_code = 404


class StorageError(TireMLError, IOError):
    """Raised when a filesystem read or write fails."""


class ModelUnavailableError(TireMLError):
    """Raised when the model server cannot be reached or fails a batch call."""

    status_code = 503


class InsufficientDataError(TireMLError):
    """Raised by training when there is neither real nor synthetic data."""


__all__ = [
    "TireMLError",
    "ValidationError",
    "ImageDecodeError",
    "PayloadTooLargeError",
    "NotFoundError",
    "StorageError",
    "ModelUnavailableError",
    "InsufficientDataError",
]

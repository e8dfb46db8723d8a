"""Shared fixtures for the test suite"""
# Location: tests/helpers.py

import io
import sys
from pathlib import Path

import requests
from PIL import Image

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def make_jpeg(width=64, height=48, color=(120, 60, 30)):
    """Encode a solid-color RGB image as JPEG bytes."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def make_png(width=32, height=32, mode="RGBA"):
    buffer = io.BytesIO()
    Image.new(mode, (width, height)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    ``routes`` maps ``(method, path)`` to a FakeResponse, a list of them
    (consumed in order) or an exception instance to raise.
    """

    def __init__(self, base_url="http://model-server", routes=None):
        self.base_url = base_url
        self.routes = dict(routes or {})
        self.calls = []

    def _dispatch(self, method, url, **kwargs):
        path = url[len(self.base_url):]
        self.calls.append((method, path, kwargs))
        route = self.routes.get((method, path))
        if route is None:
            raise requests.ConnectionError(f"No route for {method} {path}")
        if isinstance(route, list):
            route = route.pop(0)
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def calls_to(self, method, path):
        return [call for call in self.calls if call[0] == method and call[1] == path]


def server_analysis(tread=6.5, condition="good", pattern="inner"):
    """Analysis payload as the model server returns it."""
    return {
        "treadDepth": {"value": tread, "unit": "mm", "confidence": 0.85},
        "condition": {
            "label": condition,
            "confidence": 0.7,
            "scores": {label: (0.7 if label == condition else 0.075)
                       for label in ["excellent", "good", "fair", "poor", "critical"]},
        },
        "wearPattern": {"pattern": pattern, "confidence": 0.8, "severity": "low"},
        "metadata": {
            "analyzedAt": "2024-01-01T00:00:00Z",
            "imageSize": 224,
            "processingTime": 12.0,
            "modelsUsed": ["tread-depth-model", "condition-classifier-model", "wear-pattern-model"],
        },
    }

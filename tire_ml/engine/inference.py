"""
Inference Service
=================
Client side of tire analysis.

Images are resized and re-encoded locally, then sent to the model server.
When the server cannot be reached the service answers with a mock analysis
instead of failing; the returned ``AnalysisOutcome`` says which path ran.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..errors import ModelUnavailableError
from ..utils.preprocessing import ImagePreprocessor
from .analysis import (
    AnalysisOutcome,
    AnalysisSource,
    MockAnalyzer,
    result_from_server_payload,
)

logger = logging.getLogger(__name__)


class InferenceService:
    """
    Image-in, analysis-out.

    Args:
        server_url: Model server base URL; ``None`` always uses the mock
        preprocessor: Resize/encode policy for outgoing images
        mock: Mock analyzer used as fallback
        probe_timeout: Timeout of the ``/health`` liveness probe
        request_timeout: Timeout of analysis requests
        max_batch_size: Images per ``/analyze/batch`` request
        session: ``requests.Session`` (injected in tests)
    """

    def __init__(
        self,
        server_url: Optional[str] = "http://localhost:3001",
        preprocessor: Optional[ImagePreprocessor] = None,
        mock: Optional[MockAnalyzer] = None,
        probe_timeout: float = 5.0,
        request_timeout: float = 30.0,
        max_batch_size: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.server_url = server_url.rstrip("/") if server_url else None
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.mock = mock or MockAnalyzer()
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self.max_batch_size = max_batch_size
        self.session = session or requests.Session()

    @property
    def image_size(self) -> int:
        return self.preprocessor.target_size[0]

    def is_server_available(self) -> bool:
        """Lightweight liveness probe with a short timeout."""
        if not self.server_url:
            return False
        try:
            response = self.session.get(f"{self.server_url}/health", timeout=self.probe_timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug(f"Model server probe failed: {e}")
            return False

    def _mock_outcome(self, start: float) -> AnalysisOutcome:
        elapsed_ms = (time.time() - start) * 1000
        return AnalysisOutcome(AnalysisSource.MOCK, self.mock.analyze(self.image_size, elapsed_ms))

    def _model_outcome(self, payload: Dict[str, Any], start: float) -> AnalysisOutcome:
        elapsed_ms = (time.time() - start) * 1000
        result = result_from_server_payload(payload, self.mock, self.image_size, elapsed_ms)
        return AnalysisOutcome(AnalysisSource.MODEL, result)

    def analyze(self, image_bytes: bytes) -> AnalysisOutcome:
        """
        Analyze a single image.

        Raises:
            ImageDecodeError: bytes are not a decodable image
            PayloadTooLargeError: bytes exceed the size limit
        """
        start = time.time()
        jpeg = self.preprocessor.prepare_jpeg(image_bytes)

        if not self.is_server_available():
            logger.info("Model server unavailable, using mock analysis")
            return self._mock_outcome(start)

        try:
            response = self.session.post(
                f"{self.server_url}/analyze",
                files={"image": ("image.jpg", jpeg, "image/jpeg")},
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            payload = response.json()["analysis"]
            return self._model_outcome(payload, start)
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Model server analysis failed, using mock analysis: {e}")
            return self._mock_outcome(start)

    def batch_analyze(self, images: Sequence[bytes]) -> List[AnalysisOutcome]:
        """
        Analyze several images; one outcome per image, in order.

        Every image is validated before anything is sent. If the probe says
        the server is up but a batch request then fails, the whole call fails
        with ``ModelUnavailableError``. Images the server could not analyze
        individually get a mock outcome.
        """
        start = time.time()
        jpegs = [self.preprocessor.prepare_jpeg(data) for data in images]
        if not jpegs:
            return []

        if not self.is_server_available():
            logger.info(f"Model server unavailable, using mock analysis for {len(jpegs)} images")
            return [self._mock_outcome(start) for _ in jpegs]

        outcomes: List[AnalysisOutcome] = []
        for offset in range(0, len(jpegs), self.max_batch_size):
            chunk = jpegs[offset:offset + self.max_batch_size]
            files = [
                ("images", (f"image_{offset + i}.jpg", jpeg, "image/jpeg"))
                for i, jpeg in enumerate(chunk)
            ]
            try:
                response = self.session.post(
                    f"{self.server_url}/analyze/batch",
                    files=files,
                    timeout=self.request_timeout,
                )
                response.raise_for_status()
                results = response.json()["results"]
            except (requests.RequestException, ValueError, KeyError) as e:
                raise ModelUnavailableError(f"Batch analysis transport failed: {e}") from e

            if len(results) != len(chunk):
                raise ModelUnavailableError(
                    f"Model server returned {len(results)} results for {len(chunk)} images"
                )
            for item in results:
                analysis = item.get("analysis") if isinstance(item, dict) else None
                if not analysis:
                    logger.warning(f"No analysis for {item.get('filename') if isinstance(item, dict) else item}, using mock")
                    outcomes.append(self._mock_outcome(start))
                    continue
                try:
                    outcomes.append(self._model_outcome(analysis, start))
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Malformed analysis for {item.get('filename')}, using mock: {e}")
                    outcomes.append(self._mock_outcome(start))
        return outcomes

    def get_model_status(self) -> Dict[str, Any]:
        """Describe the model server, or report that mock analysis is in use."""
        if self.is_server_available():
            try:
                response = self.session.get(f"{self.server_url}/models", timeout=self.probe_timeout)
                response.raise_for_status()
                return {"available": True, "server": self.server_url, "models": response.json()}
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"Could not read model list: {e}")
        return {
            "available": False,
            "server": self.server_url,
            "message": "Model server unavailable, using mock analysis",
        }

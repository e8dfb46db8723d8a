"""Tests for inference"""
# Location: tests/test_inference.py

import random
import unittest

import requests

from tire_ml.engine.analysis import (
    CONDITION_LABELS,
    SEVERITIES,
    WEAR_PATTERNS,
    AnalysisSource,
    MockAnalyzer,
    normalize_scores,
    wear_severity,
)
from tire_ml.engine.inference import InferenceService
from tire_ml.errors import ImageDecodeError, ModelUnavailableError
from tire_ml.utils.preprocessing import ImagePreprocessor

from .helpers import FakeResponse, FakeSession, make_jpeg, server_analysis

SERVER = "http://model-server"


def healthy():
    return FakeResponse(200, {"status": "healthy", "models": [], "timestamp": "x"})


class TestAnalysisHelpers(unittest.TestCase):
    """Test suite for shared analysis helpers"""

    def test_wear_severity(self):
        self.assertEqual(wear_severity("uniform", 1.0), "low")
        self.assertEqual(wear_severity("inner", 2.0), "high")
        self.assertEqual(wear_severity("outer", 4.0), "medium")
        self.assertEqual(wear_severity("random", 8.0), "low")
        self.assertEqual(wear_severity("inner", None), "medium")

    def test_normalize_scores_completes_and_sums_to_one(self):
        scores = normalize_scores({"good": 3.0, "poor": 1.0, "bogus": 9.0}, CONDITION_LABELS)
        self.assertEqual(set(scores), set(CONDITION_LABELS))
        self.assertAlmostEqual(sum(scores.values()), 1.0)
        self.assertAlmostEqual(scores["good"], 0.75)

    def test_normalize_all_zero_is_uniform(self):
        scores = normalize_scores({}, CONDITION_LABELS)
        self.assertTrue(all(abs(v - 0.2) < 1e-9 for v in scores.values()))

    def test_mock_analysis_shape(self):
        mock = MockAnalyzer(random.Random(7))
        for _ in range(50):
            result = mock.analyze(image_size=224)
            self.assertTrue(1.0 <= result.tread_depth.value <= 10.0)
            self.assertIn(result.condition.label, CONDITION_LABELS)
            self.assertAlmostEqual(sum(result.condition.scores.values()), 1.0)
            self.assertIn(result.wear_pattern.pattern, WEAR_PATTERNS)
            self.assertIn(result.wear_pattern.severity, SEVERITIES)


class TestInferenceService(unittest.TestCase):
    """Test suite for the model server client"""

    def _service(self, routes=None, max_batch_size=10):
        self.session = FakeSession(SERVER, routes)
        return InferenceService(
            server_url=SERVER,
            preprocessor=ImagePreprocessor(target_size=(32, 32)),
            mock=MockAnalyzer(random.Random(1)),
            max_batch_size=max_batch_size,
            session=self.session,
        )

    def test_unreachable_server_uses_mock(self):
        service = self._service()
        outcome = service.analyze(make_jpeg())
        self.assertIs(outcome.source, AnalysisSource.MOCK)
        self.assertTrue(outcome.is_mock)
        self.assertEqual(self.session.calls_to("POST", "/analyze"), [])

    def test_no_server_url_uses_mock_without_probing(self):
        service = InferenceService(server_url=None, session=FakeSession(SERVER))
        self.assertTrue(service.analyze(make_jpeg()).is_mock)

    def test_model_analysis(self):
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze"): FakeResponse(200, {"success": True, "analysis": server_analysis()}),
        })
        outcome = service.analyze(make_jpeg())
        self.assertIs(outcome.source, AnalysisSource.MODEL)
        self.assertEqual(outcome.result.tread_depth.value, 6.5)
        self.assertEqual(outcome.result.condition.label, "good")
        self.assertEqual(outcome.result.wear_pattern.pattern, "inner")
        self.assertEqual(outcome.result.metadata.filled_fields, [])

        _, _, kwargs = self.session.calls_to("POST", "/analyze")[0]
        self.assertIn("image", kwargs["files"])

    def test_partial_payload_is_filled_from_mock(self):
        payload = server_analysis(tread=14.0)
        del payload["wearPattern"]
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze"): FakeResponse(200, {"analysis": payload}),
        })
        outcome = service.analyze(make_jpeg())
        self.assertIs(outcome.source, AnalysisSource.MODEL)
        self.assertEqual(outcome.result.tread_depth.value, 10.0)
        self.assertEqual(outcome.result.metadata.filled_fields, ["wearPattern"])
        self.assertIn(outcome.result.wear_pattern.pattern, WEAR_PATTERNS)

    def test_server_error_falls_back_to_mock(self):
        for failure in (FakeResponse(500, {"error": "boom"}), requests.Timeout("slow")):
            with self.subTest(failure=failure):
                service = self._service({
                    ("GET", "/health"): healthy(),
                    ("POST", "/analyze"): failure,
                })
                self.assertTrue(service.analyze(make_jpeg()).is_mock)

    def test_undecodable_image_raises_before_any_request(self):
        service = self._service({("GET", "/health"): healthy()})
        with self.assertRaises(ImageDecodeError):
            service.analyze(b"garbage")
        self.assertEqual(self.session.calls, [])

    def test_batch_is_chunked(self):
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze/batch"): [
                FakeResponse(200, {"results": [{"filename": f"{i}", "analysis": server_analysis()} for i in range(3)]}),
                FakeResponse(200, {"results": [{"filename": "3", "analysis": server_analysis()},
                                               {"filename": "4", "error": "bad"}]}),
            ],
        }, max_batch_size=3)
        outcomes = service.batch_analyze([make_jpeg() for _ in range(5)])

        self.assertEqual(len(outcomes), 5)
        self.assertEqual(len(self.session.calls_to("POST", "/analyze/batch")), 2)
        self.assertEqual([o.source for o in outcomes[:4]], [AnalysisSource.MODEL] * 4)
        self.assertIs(outcomes[4].source, AnalysisSource.MOCK)

    def test_batch_transport_failure_raises(self):
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze/batch"): requests.ConnectionError("reset"),
        })
        with self.assertRaises(ModelUnavailableError):
            service.batch_analyze([make_jpeg(), make_jpeg()])

    def test_batch_count_mismatch_raises(self):
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze/batch"): FakeResponse(200, {"results": [{"analysis": server_analysis()}]}),
        })
        with self.assertRaises(ModelUnavailableError):
            service.batch_analyze([make_jpeg(), make_jpeg()])

    def test_batch_malformed_item_falls_back_to_mock(self):
        bad = server_analysis()
        bad["treadDepth"]["value"] = "n/a"
        service = self._service({
            ("GET", "/health"): healthy(),
            ("POST", "/analyze/batch"): FakeResponse(200, {"results": [
                {"filename": "0", "analysis": server_analysis()},
                {"filename": "1", "analysis": bad},
            ]}),
        })
        outcomes = service.batch_analyze([make_jpeg(), make_jpeg()])

        self.assertEqual([o.source for o in outcomes], [AnalysisSource.MODEL, AnalysisSource.MOCK])

    def test_batch_with_server_down_is_all_mock(self):
        service = self._service()
        outcomes = service.batch_analyze([make_jpeg() for _ in range(3)])
        self.assertEqual(len(outcomes), 3)
        self.assertTrue(all(o.is_mock for o in outcomes))

    def test_batch_validates_every_image_first(self):
        service = self._service({("GET", "/health"): healthy()})
        with self.assertRaises(ImageDecodeError):
            service.batch_analyze([make_jpeg(), b"broken"])
        self.assertEqual(self.session.calls, [])

    def test_model_status(self):
        service = self._service()
        status = service.get_model_status()
        self.assertFalse(status["available"])

        service = self._service({
            ("GET", "/health"): healthy(),
            ("GET", "/models"): FakeResponse(200, {"tread-depth-model": {"loaded": True}}),
        })
        status = service.get_model_status()
        self.assertTrue(status["available"])
        self.assertIn("tread-depth-model", status["models"])


if __name__ == '__main__':
    unittest.main()

"""Tests for the evaluation service"""
# Location: tests/test_evaluation.py

import json
import math
import tempfile
import unittest
from pathlib import Path

from tire_ml.engine.model_registry import ModelStore
from tire_ml.evaluation.evaluator import EvaluationConfig, EvaluationService
from tire_ml.feedback.sample_store import SampleStore
from tire_ml.training.trainer import TrainingPipeline

from .test_training import IMAGE_SIZE, add_labeled_samples, tiny_config


class TestEvaluationService(unittest.TestCase):
    """Test suite for held-out evaluation and reports"""

    @classmethod
    def setUpClass(cls):
        cls._tmp = tempfile.TemporaryDirectory()
        root = Path(cls._tmp.name)
        cls.model_store = ModelStore(root / "models")
        TrainingPipeline(SampleStore(root / "train-data"), cls.model_store, tiny_config()).train_all()

    @classmethod
    def tearDownClass(cls):
        cls._tmp.cleanup()

    def setUp(self):
        self._run_tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._run_tmp.name)
        self.store = SampleStore(self.root / "data", image_size=IMAGE_SIZE)
        self.results_dir = self.root / "results"

    def tearDown(self):
        self._run_tmp.cleanup()

    def _service(self, model_store=None, **config):
        values = dict(test_fraction=1.0, batch_size=4, device="cpu")
        values.update(config)
        return EvaluationService(self.store, model_store or self.model_store, self.results_dir, EvaluationConfig(**values))

    def test_no_models(self):
        service = self._service(model_store=ModelStore(self.root / "no-models"))
        report = service.evaluate_all()
        self.assertEqual(report.models, {})
        self.assertEqual(report.summary["modelCount"], 0)
        self.assertEqual(report.average_accuracy, 0.0)
        self.assertEqual(report.summary["overallStatus"], "needs_improvement")
        self.assertIn("Consider collecting more training data", report.recommendations)

    def test_models_without_test_data_get_empty_metrics(self):
        report = self._service().evaluate_all()
        self.assertEqual(len(report.models), 3)
        for evaluation in report.models.values():
            self.assertEqual(evaluation.status, "needs_improvement")
            self.assertEqual(evaluation.metrics["sampleCount"], 0)
            self.assertEqual(evaluation.metrics["loss"], 0.0)
        self.assertEqual(report.models["conditionClassifier"].accuracy, 0.0)
        self.assertEqual(report.average_accuracy, 0.0)

    def test_held_out_metrics(self):
        add_labeled_samples(self.store, 6, tread_depth=5.0, condition="fair", wear_pattern="inner")
        report = self._service().evaluate_all()

        tread = report.models["treadDepth"]
        self.assertEqual(tread.metrics["sampleCount"], 6)
        for key in ("mse", "mae", "rmse", "r2", "loss"):
            self.assertTrue(math.isfinite(tread.metrics[key]), key)

        condition = report.models["conditionClassifier"]
        self.assertIn(condition.metrics["accuracy"], (0.0, 1.0))
        self.assertTrue(math.isfinite(condition.metrics["f1Score"]))
        self.assertEqual(condition.model_version, 1)

    def test_status_thresholds(self):
        add_labeled_samples(self.store, 4, tread_depth=5.0, condition="fair", wear_pattern="inner")
        lenient = self._service(accuracy_threshold=-1.0, mse_threshold=1e9).evaluate_all()
        self.assertTrue(all(e.status == "good" for e in lenient.models.values()))

        strict = self._service(accuracy_threshold=1.0, mse_threshold=0.0).evaluate_all()
        self.assertTrue(all(e.status == "needs_improvement" for e in strict.models.values()))

    def test_run_writes_report_and_latest_summary(self):
        service = self._service()
        report = service.run()

        report_path = Path(report.report_path)
        self.assertTrue(report_path.exists())
        self.assertRegex(report_path.name, r"^evaluation-\d+\.json$")
        with open(report_path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        self.assertEqual(set(saved), {"timestamp", "models", "summary", "recommendations"})
        self.assertIn("tread-depth-model", saved["models"]["treadDepth"]["modelName"])

        latest = service.load_latest_summary()
        self.assertEqual(latest["reportFile"], report_path.name)
        self.assertEqual(latest["recommendations"], report.recommendations)

    def test_latest_summary_missing(self):
        self.assertIsNone(self._service().load_latest_summary())


if __name__ == '__main__':
    unittest.main()

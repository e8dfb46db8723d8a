"""Tests for the pipeline command line"""
# Location: tests/test_pipeline.py

import tempfile
import unittest
from pathlib import Path

from tire_ml.bootstrap import build_container
from tire_ml.config.settings import Settings

from . import helpers  # noqa: F401  (puts the project root on sys.path)
from .test_orchestrator import StubDeployer

import pipeline


class TestPipelineRollback(unittest.TestCase):
    """Test suite for the rollback stage"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        settings = Settings(
            DATA_DIR=Path(self._tmp.name) / "data",
            IMAGE_SIZE=32,
            REGRESSION_EPOCHS=1,
            CLASSIFICATION_EPOCHS=1,
            TRAINING_BATCH_SIZE=4,
            MIN_REAL_SAMPLES=4,
            SYNTHETIC_SAMPLES=8,
            TEST_FRACTION=0.0,
            TRAINING_DEVICE="cpu",
            LOG_TO_FILE=False,
        )
        self.deployer = StubDeployer()
        self.container = build_container(settings, deployer=self.deployer)

    def tearDown(self):
        self._tmp.cleanup()

    def test_rollback_restores_previous_versions(self):
        self.container.trainer.train("treadDepth")
        self.container.trainer.train("treadDepth")
        self.assertEqual(pipeline.model_versions(self.container), {"tread-depth-model": 2})

        self.assertEqual(pipeline.rollback(self.container), 0)

        self.assertEqual(pipeline.model_versions(self.container), {"tread-depth-model": 1})
        self.assertEqual(self.deployer.restarts, 1)
        event = self.container.event_log.read()[-1]
        self.assertEqual(event["eventType"], "model_rollback")
        self.assertEqual(event["status"], "success")
        self.assertEqual(event["models"], {"tread-depth-model": 1})

    def test_rollback_without_backups_is_skipped(self):
        self.assertEqual(pipeline.rollback(self.container), 0)
        self.assertEqual(self.deployer.restarts, 0)
        self.assertEqual(self.container.event_log.read()[-1]["status"], "skipped")


if __name__ == '__main__':
    unittest.main()

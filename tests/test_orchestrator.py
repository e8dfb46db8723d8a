"""Tests for the pipeline orchestrator"""
# Location: tests/test_orchestrator.py

import random
import tempfile
import threading
import unittest
from pathlib import Path

from tire_ml.engine.analysis import MockAnalyzer
from tire_ml.engine.inference import InferenceService
from tire_ml.feedback.records import SampleLabels, TrainingSample
from tire_ml.feedback.sample_store import SampleStore
from tire_ml.orchestration.event_log import EventLog
from tire_ml.orchestration.orchestrator import (
    OrchestratorConfig,
    PipelineOrchestrator,
    PipelinePhase,
    PipelineState,
)
from tire_ml.utils.preprocessing import ImagePreprocessor

from .helpers import make_jpeg


class StubSummary:
    def to_dict(self):
        return {"results": {}, "failures": {}}


class StubTrainer:
    def __init__(self, error=None, gate=None):
        self.calls = 0
        self.error = error
        self.gate = gate
        self.started = threading.Event()

    def train_all(self):
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return StubSummary()


class StubReport:
    def __init__(self, accuracy):
        self.average_accuracy = accuracy
        self.summary = {"averageAccuracy": accuracy, "averageLoss": 0.1, "overallStatus": "good", "modelCount": 3}
        self.report_path = "results/evaluation-1.json"


class StubEvaluator:
    def __init__(self, accuracies):
        self.accuracies = list(accuracies)
        self.calls = 0

    def run(self):
        self.calls += 1
        return StubReport(self.accuracies.pop(0) if len(self.accuracies) > 1 else self.accuracies[0])


class StubDeployer:
    url = "http://127.0.0.1:3001"

    def __init__(self):
        self.restarts = 0
        self.stops = 0

    def restart(self):
        self.restarts += 1

    def stop(self):
        self.stops += 1
        return True


class TestPipelineOrchestrator(unittest.TestCase):
    """Test suite for phase sequencing, locking and drift monitoring"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = SampleStore(self.root / "data", image_size=32)
        self.event_log = EventLog(self.root / "logs" / "mlops-pipeline.log")
        self.inference = InferenceService(
            server_url=None,
            preprocessor=ImagePreprocessor(target_size=(32, 32)),
            mock=MockAnalyzer(random.Random(11)),
        )
        self.trainer = StubTrainer()
        self.evaluator = StubEvaluator([0.9])
        self.deployer = StubDeployer()
        self.orchestrator = None

    def tearDown(self):
        if self.orchestrator is not None:
            self.orchestrator.shutdown()
        self._tmp.cleanup()

    def _orchestrator(self, deployer="default"):
        self.orchestrator = PipelineOrchestrator(
            self.store,
            self.inference,
            self.trainer,
            self.evaluator,
            self.deployer if deployer == "default" else deployer,
            self.event_log,
            OrchestratorConfig(drift_threshold=0.02, monitoring_interval_seconds=3600, min_samples=100),
        )
        return self.orchestrator

    def _events(self, event_type=None):
        events = self.event_log.read()
        if event_type is None:
            return events
        return [e for e in events if e["eventType"] == event_type]

    def test_full_run_executes_six_phases(self):
        orchestrator = self._orchestrator()
        run = orchestrator.run_full_pipeline(trigger="test")

        self.assertTrue(run.succeeded)
        self.assertEqual([p.phase for p in run.phases], list(PipelinePhase))
        self.assertEqual(self.trainer.calls, 1)
        self.assertEqual(self.deployer.restarts, 1)
        self.assertEqual(orchestrator.last_accuracy, 0.9)
        self.assertTrue(orchestrator.is_monitoring)
        self.assertIs(orchestrator.state, PipelineState.IDLE)

        complete = self._events("pipeline_complete")
        self.assertEqual(len(complete), 1)
        self.assertEqual(complete[0]["status"], "success")
        for phase in PipelinePhase:
            self.assertEqual(self._events(phase.value)[0]["status"], "success")

    def test_failed_phase_does_not_stop_the_run(self):
        self.trainer = StubTrainer(error=RuntimeError("out of memory"))
        orchestrator = self._orchestrator()
        run = orchestrator.run_full_pipeline()

        self.assertFalse(run.succeeded)
        self.assertEqual(run.failed_phases, [PipelinePhase.MODEL_TRAINING])
        self.assertEqual(self.evaluator.calls, 1)
        self.assertEqual(self.deployer.restarts, 1)

        failed = self._events("model_training")[0]
        self.assertEqual(failed["status"], "failed")
        self.assertIn("out of memory", failed["error"])
        self.assertEqual(self._events("pipeline_complete")[0]["status"], "partial")

    def test_missing_deployer_fails_deployment_phase(self):
        orchestrator = self._orchestrator(deployer=None)
        run = orchestrator.run_full_pipeline()
        self.assertEqual(run.failed_phases, [PipelinePhase.MODEL_DEPLOYMENT])

    def test_concurrent_run_is_skipped(self):
        gate = threading.Event()
        self.trainer = StubTrainer(gate=gate)
        orchestrator = self._orchestrator()

        worker = threading.Thread(target=orchestrator.run_full_pipeline)
        worker.start()
        try:
            self.assertTrue(self.trainer.started.wait(5))
            self.assertTrue(orchestrator.is_running)
            skipped = orchestrator.run_full_pipeline()
            self.assertTrue(skipped.skipped)
            self.assertEqual(skipped.phases, [])
            self.assertEqual(orchestrator.perform_monitoring_check()["status"], "skipped")
        finally:
            gate.set()
            worker.join(5)
        self.assertEqual(self.trainer.calls, 1)
        self.assertEqual(len(self._events("pipeline_skipped")), 1)

    def test_drift_triggers_retraining(self):
        self.evaluator = StubEvaluator([0.9, 0.85, 0.88])
        orchestrator = self._orchestrator()
        orchestrator.run_full_pipeline()

        result = orchestrator.perform_monitoring_check()
        self.assertTrue(result["retrained"])
        self.assertAlmostEqual(result["accuracyDrop"], 0.05)
        self.assertEqual(self.trainer.calls, 2)
        self.assertEqual(self.deployer.restarts, 2)
        self.assertEqual(orchestrator.last_accuracy, 0.88)
        self.assertEqual(self._events("monitoring_check")[0]["status"], "success")

    def test_small_drop_keeps_models(self):
        self.evaluator = StubEvaluator([0.9, 0.89])
        orchestrator = self._orchestrator()
        orchestrator.run_full_pipeline()

        result = orchestrator.perform_monitoring_check()
        self.assertFalse(result["retrained"])
        self.assertEqual(self.trainer.calls, 1)
        self.assertEqual(orchestrator.last_accuracy, 0.89)
        self.assertEqual(result["dataVolume"], 0)

    def test_first_check_without_baseline_never_retrains(self):
        self.evaluator = StubEvaluator([0.5])
        orchestrator = self._orchestrator()
        result = orchestrator.perform_monitoring_check()
        self.assertFalse(result["retrained"])
        self.assertEqual(orchestrator.last_accuracy, 0.5)

    def test_data_collection_and_labeling(self):
        labeled_id = self.store.new_sample_id()
        self.store.write_image(labeled_id, make_jpeg())
        self.store.write(TrainingSample(id=labeled_id, image_path=None, tire_id="t",
                                        labels=SampleLabels(condition="good")))
        unlabeled_id = self.store.new_sample_id()
        self.store.write_image(unlabeled_id, make_jpeg())
        self.store.write(TrainingSample(id=unlabeled_id, image_path=None, tire_id="t"))
        orphan_id = self.store.new_sample_id()
        self.store.write(TrainingSample(id=orphan_id, image_path=None, tire_id="t"))

        orchestrator = self._orchestrator()
        inventory = orchestrator.run_data_collection()
        self.assertEqual(inventory["samples"], 3)
        self.assertEqual(inventory["labeled"], 1)
        self.assertEqual(inventory["orphanedLabels"], 1)
        self.assertEqual(inventory["orphanedImages"], 0)

        labeling = orchestrator.run_data_labeling()
        self.assertEqual(labeling["labeled"], 1)
        self.assertEqual(labeling["skippedWithoutImage"], 1)
        relabeled = self.store.read(unlabeled_id)
        self.assertTrue(relabeled.has_labels)
        self.assertEqual(relabeled.analysis_source, "mock")
        self.assertEqual(self.store.read(labeled_id).labels.to_dict(), {"condition": "good"})

    def test_single_phase(self):
        orchestrator = self._orchestrator()
        result = orchestrator.run_single_phase(PipelinePhase.MODEL_EVALUATION)
        self.assertTrue(result.success)
        self.assertEqual(result.details["averageAccuracy"], 0.9)
        self.assertFalse(orchestrator.is_monitoring)

    def test_monitoring_start_is_idempotent(self):
        orchestrator = self._orchestrator()
        self.assertTrue(orchestrator.start_monitoring())
        self.assertFalse(orchestrator.start_monitoring())
        orchestrator.stop_monitoring()
        self.assertFalse(orchestrator.is_monitoring)

    def test_shutdown_stops_everything_and_refuses_runs(self):
        orchestrator = self._orchestrator()
        orchestrator.start_monitoring()
        orchestrator.shutdown()

        self.assertFalse(orchestrator.is_monitoring)
        self.assertEqual(self.deployer.stops, 1)
        self.assertTrue(orchestrator.run_full_pipeline().skipped)
        self.assertFalse(orchestrator.request_run())
        self.assertEqual(len(self._events("pipeline_shutdown")), 1)

        orchestrator.shutdown()
        self.assertEqual(self.deployer.stops, 1)


if __name__ == '__main__':
    unittest.main()

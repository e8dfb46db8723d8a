"""
Pipeline Orchestrator
=====================
Runs the MLOps pipeline: data collection -> data labeling -> model training
-> model evaluation -> model deployment -> monitoring.

Phases are best-effort: a failing phase is recorded in the run result and the
event log, and the next phase still runs. Only one pipeline run happens at a
time per process; a run requested while another is active is skipped.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..errors import ModelUnavailableError, TireMLError
from ..feedback.coordinator import labels_from_outcome
from ..feedback.sample_store import SampleStore
from .event_log import EventLog

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PipelinePhase(str, Enum):
    DATA_COLLECTION = "data_collection"
    DATA_LABELING = "data_labeling"
    MODEL_TRAINING = "model_training"
    MODEL_EVALUATION = "model_evaluation"
    MODEL_DEPLOYMENT = "model_deployment"
    MONITORING = "monitoring"


class PipelineState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    LABELING = "labeling"
    TRAINING = "training"
    EVALUATING = "evaluating"
    DEPLOYING = "deploying"
    MONITORING = "monitoring"


PHASE_STATES = {
    PipelinePhase.DATA_COLLECTION: PipelineState.COLLECTING,
    PipelinePhase.DATA_LABELING: PipelineState.LABELING,
    PipelinePhase.MODEL_TRAINING: PipelineState.TRAINING,
    PipelinePhase.MODEL_EVALUATION: PipelineState.EVALUATING,
    PipelinePhase.MODEL_DEPLOYMENT: PipelineState.DEPLOYING,
    PipelinePhase.MONITORING: PipelineState.MONITORING,
}


@dataclass
class PhaseResult:
    """Outcome of one pipeline phase."""
    phase: PipelinePhase
    success: bool
    started_at: str
    duration_seconds: float
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "success": self.success,
            "startedAt": self.started_at,
            "durationSeconds": self.duration_seconds,
            "details": dict(self.details),
            "error": self.error,
        }


@dataclass
class PipelineRunResult:
    """Outcome of one ``run_full_pipeline`` call."""
    run_id: str
    trigger: str
    started_at: str
    finished_at: Optional[str] = None
    phases: List[PhaseResult] = field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.skipped and all(p.success for p in self.phases)

    @property
    def failed_phases(self) -> List[PipelinePhase]:
        return [p.phase for p in self.phases if not p.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "trigger": self.trigger,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "skipped": self.skipped,
            "reason": self.reason,
            "succeeded": self.succeeded,
            "phases": [p.to_dict() for p in self.phases],
        }


@dataclass
class OrchestratorConfig:
    """Configuration for the pipeline control loop."""
    drift_threshold: float = 0.02  # retrain if accuracy drops by more than this
    monitoring_interval_seconds: float = 24 * 3600
    min_samples: int = 100

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(
            drift_threshold=settings.DRIFT_THRESHOLD,
            monitoring_interval_seconds=settings.monitoring_interval_seconds,
            min_samples=settings.PIPELINE_MIN_SAMPLES,
        )


class PipelineOrchestrator:
    """
    Sequences the pipeline phases and runs the drift-monitoring loop.

    Args:
        store: Sample store
        inference: Inference service used to auto-label samples
        trainer: ``TrainingPipeline``
        evaluator: ``EvaluationService``
        deployer: ``ModelServerProcess`` (or anything with ``restart``/``stop``/``url``)
        event_log: Pipeline event log
        config: Orchestrator configuration
    """

    def __init__(
        self,
        store: SampleStore,
        inference,
        trainer,
        evaluator,
        deployer,
        event_log: EventLog,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.store = store
        self.inference = inference
        self.trainer = trainer
        self.evaluator = evaluator
        self.deployer = deployer
        self.event_log = event_log
        self.config = config or OrchestratorConfig()

        self._run_lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._shutdown = threading.Event()
        self._stop_monitoring = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None
        self._monitor_lock = threading.Lock()
        self._last_accuracy: Optional[float] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_accuracy(self) -> Optional[float]:
        return self._last_accuracy

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def _log_event(self, event_type: str, status: str, **data: Any):
        try:
            self.event_log.append(event_type, status, **data)
        except TireMLError as e:
            logger.warning(f"Could not record {event_type} event: {e}")

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------

    def run_full_pipeline(self, trigger: str = "manual") -> PipelineRunResult:
        """
        Run all six phases in order.

        Returns a skipped result, without running anything, when another run
        is in progress or the orchestrator has been shut down.
        """
        run = PipelineRunResult(run_id=uuid.uuid4().hex[:12], trigger=trigger, started_at=_now_iso())

        if self._shutdown.is_set():
            return self._skip(run, "orchestrator is shut down")
        if not self._run_lock.acquire(blocking=False):
            return self._skip(run, "pipeline already running")

        try:
            logger.info(f"Starting MLOps pipeline run {run.run_id} (trigger: {trigger})")
            for phase, step in self._phases():
                run.phases.append(self._run_phase(phase, step))
            run.finished_at = _now_iso()

            status = "success" if run.succeeded else "partial"
            self._log_event(
                "pipeline_complete",
                status,
                runId=run.run_id,
                trigger=trigger,
                phases=[p.phase.value for p in run.phases],
                failedPhases=[p.value for p in run.failed_phases],
            )
            if run.succeeded:
                logger.info(f"Pipeline run {run.run_id} completed")
            else:
                logger.warning(
                    f"Pipeline run {run.run_id} completed with failed phases: "
                    f"{', '.join(p.value for p in run.failed_phases)}"
                )
            return run
        finally:
            self._state = PipelineState.IDLE
            self._run_lock.release()

    def _skip(self, run: PipelineRunResult, reason: str) -> PipelineRunResult:
        logger.info(f"Pipeline run skipped: {reason}")
        run.skipped = True
        run.reason = reason
        run.finished_at = run.started_at
        self._log_event("pipeline_skipped", "skipped", trigger=run.trigger, reason=reason)
        return run

    def request_run(self, job=None) -> bool:
        """
        Start a full pipeline run on a background thread.

        Used as the coordinator's retraining callback; never blocks.
        """
        if self._shutdown.is_set():
            logger.warning("Pipeline run refused: orchestrator is shut down")
            return False
        trigger = getattr(job, "job_id", None) or "request"
        thread = threading.Thread(
            target=self.run_full_pipeline,
            kwargs={"trigger": trigger},
            name=f"pipeline-{trigger}",
            daemon=True,
        )
        thread.start()
        logger.info(f"Pipeline run requested in background (trigger: {trigger})")
        return True

    def run_single_phase(self, phase: PipelinePhase) -> PhaseResult:
        """Run one phase under the pipeline lock; fails without running when a run is in progress."""
        if not self._run_lock.acquire(blocking=False):
            logger.info(f"Phase {phase.value} skipped: pipeline already running")
            return PhaseResult(phase, False, _now_iso(), 0.0, error="pipeline already running")
        try:
            step = dict(self._phases())[phase]
            return self._run_phase(phase, step)
        finally:
            self._state = PipelineState.IDLE
            self._run_lock.release()

    def _phases(self) -> List[tuple]:
        return [
            (PipelinePhase.DATA_COLLECTION, self.run_data_collection),
            (PipelinePhase.DATA_LABELING, self.run_data_labeling),
            (PipelinePhase.MODEL_TRAINING, self.run_model_training),
            (PipelinePhase.MODEL_EVALUATION, self.run_model_evaluation),
            (PipelinePhase.MODEL_DEPLOYMENT, self.run_model_deployment),
            (PipelinePhase.MONITORING, self.run_monitoring_setup),
        ]

    def _run_phase(self, phase: PipelinePhase, step: Callable[[], Optional[Dict[str, Any]]]) -> PhaseResult:
        self._state = PHASE_STATES[phase]
        started_at = _now_iso()
        start = time.time()
        logger.info(f"Phase: {phase.value}")
        try:
            details = step() or {}
        except Exception as e:
            duration = time.time() - start
            logger.exception(f"Phase {phase.value} failed: {e}")
            self._log_event(phase.value, "failed", error=str(e), durationSeconds=duration)
            return PhaseResult(phase, False, started_at, duration, error=str(e))

        duration = time.time() - start
        self._log_event(phase.value, "success", durationSeconds=duration, **details)
        return PhaseResult(phase, True, started_at, duration, details=details)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def run_data_collection(self) -> Dict[str, Any]:
        """Inventory of the sample store."""
        label_ids = set(self.store.list_ids())
        image_ids = set()
        if self.store.images_dir.exists():
            image_ids = {p.stem for p in self.store.images_dir.glob("*.jpg")}

        labeled = expert = 0
        for sample in self.store.iter_samples():
            if sample.has_labels:
                labeled += 1
            if sample.expert_validation:
                expert += 1

        inventory = {
            "samples": len(label_ids),
            "images": len(image_ids),
            "labeled": labeled,
            "unlabeled": len(label_ids) - labeled,
            "expertValidated": expert,
            "orphanedLabels": len(label_ids - image_ids),
            "orphanedImages": len(image_ids - label_ids),
        }
        logger.info(
            f"Collected {inventory['samples']} samples "
            f"({inventory['labeled']} labeled, {inventory['expertValidated']} expert-validated)"
        )
        return inventory

    def run_data_labeling(self) -> Dict[str, Any]:
        """Auto-label samples that have neither labels nor expert validation."""
        labeled = failed = skipped = 0
        for sample in self.store.iter_samples():
            if sample.has_labels or sample.expert_validation:
                continue
            image_path = self.store.image_path(sample.id)
            if not image_path.exists():
                skipped += 1
                continue
            try:
                outcome = self.inference.analyze(image_path.read_bytes())

                def apply(stored, outcome=outcome):
                    if stored.has_labels or stored.expert_validation:
                        return
                    stored.labels = labels_from_outcome(outcome)
                    stored.analysis_source = outcome.source.value

                self.store.update(sample.id, apply)
                labeled += 1
            except (TireMLError, OSError) as e:
                logger.warning(f"Could not label {sample.id}: {e}")
                failed += 1
        logger.info(f"Auto-labeled {labeled} samples ({failed} failed, {skipped} without image)")
        return {"labeled": labeled, "failed": failed, "skippedWithoutImage": skipped}

    def run_model_training(self) -> Dict[str, Any]:
        summary = self.trainer.train_all()
        return summary.to_dict()

    def run_model_evaluation(self) -> Dict[str, Any]:
        report = self.evaluator.run()
        self._last_accuracy = report.average_accuracy
        logger.info(f"Average accuracy: {report.average_accuracy:.2%}")
        return {
            "averageAccuracy": report.summary.get("averageAccuracy", 0.0),
            "averageLoss": report.summary.get("averageLoss", 0.0),
            "overallStatus": report.summary.get("overallStatus"),
            "modelCount": report.summary.get("modelCount", 0),
            "reportFile": report.report_path,
        }

    def run_model_deployment(self) -> Dict[str, Any]:
        if self.deployer is None:
            raise ModelUnavailableError("No model server deployer configured")
        self.deployer.restart()
        logger.info(f"ML API available at: {self.deployer.url}")
        return {"endpoint": self.deployer.url}

    def run_monitoring_setup(self) -> Dict[str, Any]:
        started = self.start_monitoring()
        return {
            "intervalSeconds": self.config.monitoring_interval_seconds,
            "alreadyRunning": not started,
        }

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def perform_monitoring_check(self) -> Dict[str, Any]:
        """
        Re-evaluate and retrain when accuracy dropped by more than the
        drift threshold.

        Holds the pipeline lock for the whole check; skipped when a pipeline
        run is in progress.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Monitoring check skipped: pipeline already running")
            return {"status": "skipped", "reason": "pipeline already running"}

        try:
            logger.info("Performing monitoring check")
            result: Dict[str, Any] = {"status": "success", "retrained": False}
            previous = self._last_accuracy

            report = self.evaluator.run()
            current = report.average_accuracy
            result.update({"previousAccuracy": previous, "currentAccuracy": current})

            if previous and current:
                drop = previous - current
                result["accuracyDrop"] = drop
                if drop > self.config.drift_threshold:
                    logger.warning(f"Model accuracy dropped by {drop:.2%}, triggering retraining")
                    phases = [
                        self._run_phase(PipelinePhase.MODEL_TRAINING, self.run_model_training),
                        self._run_phase(PipelinePhase.MODEL_EVALUATION, self.run_model_evaluation),
                        self._run_phase(PipelinePhase.MODEL_DEPLOYMENT, self.run_model_deployment),
                    ]
                    result["retrained"] = True
                    result["phases"] = [p.to_dict() for p in phases]
            if not result["retrained"]:
                self._last_accuracy = current

            volume = self.store.count()
            result["dataVolume"] = volume
            if volume > self.config.min_samples:
                logger.info(f"Sufficient data available ({volume} samples)")

            self._log_event("monitoring_check", "success", **result)
            return result
        except Exception as e:
            logger.exception(f"Monitoring check failed: {e}")
            self._log_event("monitoring_check", "failed", error=str(e))
            return {"status": "failed", "error": str(e)}
        finally:
            self._state = PipelineState.IDLE
            self._run_lock.release()

    def _monitor_loop(self):
        interval = self.config.monitoring_interval_seconds
        while not self._stop_monitoring.wait(interval):
            self.perform_monitoring_check()
        logger.info("Monitoring stopped")

    def start_monitoring(self) -> bool:
        """Start the monitoring thread; False if it is already running."""
        with self._monitor_lock:
            if self.is_monitoring:
                return False
            self._stop_monitoring.clear()
            self._monitor_thread = threading.Thread(target=self._monitor_loop, name="pipeline-monitor", daemon=True)
            self._monitor_thread.start()
        hours = self.config.monitoring_interval_seconds / 3600
        logger.info(f"Continuous monitoring activated (every {hours:g} hours)")
        return True

    def stop_monitoring(self, timeout: float = 5.0):
        with self._monitor_lock:
            self._stop_monitoring.set()
            thread = self._monitor_thread
            self._monitor_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def wait_for_shutdown(self):
        """Block until ``shutdown()`` is called (foreground monitoring)."""
        while not self._shutdown.wait(1.0):
            pass

    def shutdown(self):
        """Stop monitoring, refuse new runs and stop the model server."""
        if self._shutdown.is_set():
            return
        logger.info("Shutting down MLOps pipeline")
        self._shutdown.set()
        self.stop_monitoring()
        if self.deployer is not None:
            try:
                self.deployer.stop()
            except (OSError, TireMLError) as e:
                logger.error(f"Failed to stop model server: {e}")
        self._log_event("pipeline_shutdown", "success")

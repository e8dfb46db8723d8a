"""
Service Wiring
==============
Builds the services shared by the learning API and the pipeline CLI from
one ``Settings`` instance.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config.settings import Settings, ensure_directories, get_settings
from .engine.inference import InferenceService
from .engine.model_registry import ModelStore
from .evaluation.evaluator import EvaluationConfig, EvaluationService
from .feedback.coordinator import ContinuousLearningCoordinator
from .feedback.sample_store import SampleStore
from .orchestration.deployment import ModelServerProcess
from .orchestration.event_log import EventLog
from .orchestration.orchestrator import OrchestratorConfig, PipelineOrchestrator
from .training.retrain_manager import RetrainingJobLog
from .training.trainer import TrainingConfig, TrainingPipeline
from .utils.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)

PIPELINE_LOG_FILE = "mlops-pipeline.log"


@dataclass
class ServiceContainer:
    settings: Settings
    store: SampleStore
    inference: InferenceService
    job_log: RetrainingJobLog
    model_store: ModelStore
    trainer: TrainingPipeline
    evaluator: EvaluationService
    deployer: Optional[ModelServerProcess]
    event_log: EventLog
    orchestrator: PipelineOrchestrator
    coordinator: ContinuousLearningCoordinator


def build_container(
    settings: Optional[Settings] = None,
    deployer: Optional[ModelServerProcess] = None,
    inference: Optional[InferenceService] = None,
) -> ServiceContainer:
    """
    Wire every service from settings.

    Args:
        settings: Defaults to the cached environment settings
        deployer: Overrides the model server process manager
        inference: Overrides the inference client (tests pass one with a fake session)
    """
    settings = settings or get_settings()
    ensure_directories(settings)

    store = SampleStore(settings.DATA_DIR, settings.IMAGE_SIZE, settings.SAMPLE_JPEG_QUALITY)
    if inference is None:
        inference = InferenceService(
            server_url=settings.ML_SERVER_URL,
            preprocessor=ImagePreprocessor(
                target_size=(settings.IMAGE_SIZE, settings.IMAGE_SIZE),
                max_bytes=settings.MAX_FILE_SIZE,
                jpeg_quality=settings.INFERENCE_JPEG_QUALITY,
            ),
            probe_timeout=settings.HEALTH_PROBE_TIMEOUT,
            request_timeout=settings.INFERENCE_TIMEOUT,
            max_batch_size=settings.BATCH_SIZE_LIMIT,
        )

    job_log = RetrainingJobLog(settings.JOBS_DIR)
    model_store = ModelStore(settings.MODELS_DIR)
    trainer = TrainingPipeline(store, model_store, TrainingConfig.from_settings(settings))
    evaluator = EvaluationService(
        store, model_store, settings.RESULTS_DIR, EvaluationConfig.from_settings(settings)
    )
    if deployer is None:
        deployer = ModelServerProcess(
            settings.MODELS_DIR,
            host=settings.ML_HOST,
            port=settings.ML_PORT,
            pid_file=settings.DATA_DIR / "model-server.pid",
            log_file=settings.LOG_DIR / "model-server.log",
            startup_timeout=settings.SERVER_STARTUP_TIMEOUT,
        )
    event_log = EventLog(settings.LOG_DIR / PIPELINE_LOG_FILE)

    orchestrator = PipelineOrchestrator(
        store, inference, trainer, evaluator, deployer, event_log,
        config=OrchestratorConfig.from_settings(settings),
    )
    coordinator = ContinuousLearningCoordinator(
        store,
        inference=inference,
        job_log=job_log,
        min_samples_for_retrain=settings.MIN_SAMPLES_FOR_RETRAIN,
        retrain_interval_seconds=settings.retrain_interval_seconds,
        on_retrain=orchestrator.request_run,
    )
    logger.info(f"Services wired for data directory {settings.DATA_DIR}")

    return ServiceContainer(
        settings=settings,
        store=store,
        inference=inference,
        job_log=job_log,
        model_store=model_store,
        trainer=trainer,
        evaluator=evaluator,
        deployer=deployer,
        event_log=event_log,
        orchestrator=orchestrator,
        coordinator=coordinator,
    )

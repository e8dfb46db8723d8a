"""
Continuous Learning Coordinator
===============================
Ties photo capture, inference, sample persistence and retraining decisions
together.

Per sample: captured -> analyzed (labels may stay empty) -> feedback received
-> corrected. Further feedback is applied last-write-wins per label field.

Retraining is requested when BOTH the cooldown since the last retrain has
elapsed AND the store holds at least ``min_samples_for_retrain`` samples.
A forced check waives the cooldown, never the volume floor.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from ..engine.analysis import AnalysisOutcome
from ..errors import ValidationError
from ..training.retrain_manager import RetrainingJob, RetrainingJobLog
from .records import CaptureContext, LabelCorrections, SampleLabels, SampleMetadata, TrainingSample
from .sample_store import SampleStore

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
HIGH_CONFIDENCE_RATING = 4


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def validate_rating(rating: Any) -> int:
    """Ratings are integers in [1, 5]."""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}, got {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
    return rating


def labels_from_outcome(outcome: AnalysisOutcome) -> SampleLabels:
    result = outcome.result
    return SampleLabels(
        tread_depth=result.tread_depth.value,
        condition=result.condition.label,
        wear_pattern=result.wear_pattern.pattern,
        confidence=result.condition.confidence,
    )


@dataclass
class LearningStats:
    """Aggregate view of the sample store for the dashboard."""
    total_samples: int = 0
    total_images: int = 0
    user_feedback_count: int = 0
    expert_validations: int = 0
    average_user_rating: float = 0.0
    last_retraining: Optional[str] = None
    next_retraining: Optional[str] = None
    samples_until_retrain: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSamples": self.total_samples,
            "totalImages": self.total_images,
            "userFeedbackCount": self.user_feedback_count,
            "expertValidations": self.expert_validations,
            "averageUserRating": self.average_user_rating,
            "lastRetraining": self.last_retraining,
            "nextRetraining": self.next_retraining,
            "samplesUntilRetrain": self.samples_until_retrain,
        }


class ContinuousLearningCoordinator:
    """
    Feedback loop between the capture collaborator and the training pipeline.

    Args:
        store: Sample store
        inference: Object with ``analyze(image_bytes) -> AnalysisOutcome``
        job_log: Retraining job log; the newest record seeds the cooldown
        min_samples_for_retrain: Volume floor for retraining
        retrain_interval_seconds: Cooldown between retrains
        on_retrain: Called with the ``RetrainingJob`` when retraining is requested
        clock: Time source (seconds since epoch)
    """

    def __init__(
        self,
        store: SampleStore,
        inference=None,
        job_log: Optional[RetrainingJobLog] = None,
        min_samples_for_retrain: int = 50,
        retrain_interval_seconds: float = 24 * 3600,
        on_retrain: Optional[Callable[[RetrainingJob], Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.inference = inference
        self.job_log = job_log
        self.min_samples_for_retrain = min_samples_for_retrain
        self.retrain_interval_seconds = retrain_interval_seconds
        self.on_retrain = on_retrain
        self.clock = clock

        self._lock = threading.Lock()
        self._last_retrain: Optional[float] = None

        if self.job_log is not None:
            latest = self.job_log.latest()
            if latest is not None:
                self._last_retrain = latest.triggered_timestamp
                logger.info(f"Last retraining recovered from {latest.job_id}: {latest.triggered_at}")

    @property
    def last_retrain(self) -> Optional[float]:
        return self._last_retrain

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def on_photo_captured(
        self,
        tire_id: str,
        image_bytes: bytes,
        context: Optional[CaptureContext] = None,
        analyze: bool = True,
    ) -> TrainingSample:
        """
        Store a captured photo as a training sample.

        Image decoding and storage errors propagate. Analysis failures are
        logged and leave the labels empty. The retraining check runs last and
        never fails the capture.
        """
        context = context or CaptureContext()
        sample_id = self.store.new_sample_id()
        image_path = self.store.write_image(sample_id, image_bytes)

        sample = TrainingSample(
            id=sample_id,
            image_path=str(image_path),
            tire_id=tire_id,
            vehicle_id=context.vehicle_id,
            metadata=SampleMetadata.from_context(context, _iso(self.clock())),
        )

        if analyze and self.inference is not None:
            try:
                outcome = self.inference.analyze(image_bytes)
                sample.labels = labels_from_outcome(outcome)
                sample.analysis_source = outcome.source.value
            except Exception as e:
                logger.warning(f"Analysis failed for {sample_id}, storing without labels: {e}")

        self.store.write(sample)
        logger.info(f"Captured sample {sample_id} for tire {tire_id} (source: {sample.analysis_source or 'none'})")

        self._safe_check(force=False)
        return sample

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def on_user_feedback(
        self,
        tire_id: Optional[str],
        sample_id: str,
        rating: int,
        corrections: Union[LabelCorrections, Dict[str, Any], None] = None,
    ) -> TrainingSample:
        """
        Apply a rating and optional corrections to a stored sample.

        Validation happens before the label file is touched. A rating of 4 or
        more, or any correction, forces a retraining check.
        """
        rating = validate_rating(rating)
        if isinstance(corrections, dict):
            corrections = LabelCorrections.from_dict(corrections)
        if corrections is not None:
            corrections.validate()
        feedback_at = _iso(self.clock())

        def apply(sample: TrainingSample):
            if tire_id is not None and sample.tire_id != tire_id:
                raise ValidationError(f"Sample {sample_id} does not belong to tire {tire_id}")
            sample.user_rating = rating
            sample.feedback_provided_at = feedback_at
            if corrections is not None:
                sample.apply_corrections(corrections)

        sample = self.store.update(sample_id, apply)
        corrected = corrections is not None and not corrections.is_empty
        logger.info(
            f"Feedback for {sample_id}: rating={rating}"
            + (f", corrected {', '.join(corrections.fields_set())}" if corrected else "")
        )

        if rating >= HIGH_CONFIDENCE_RATING or corrected:
            self._safe_check(force=True)
        return sample

    # ------------------------------------------------------------------
    # Retraining
    # ------------------------------------------------------------------

    def check_retraining_trigger(self, force: bool = False) -> bool:
        """
        Request retraining when the cooldown and volume conditions hold.

        Returns:
            True if a retraining job was requested
        """
        with self._lock:
            now = self.clock()
            if not force and self._last_retrain is not None:
                elapsed = now - self._last_retrain
                if elapsed < self.retrain_interval_seconds:
                    logger.debug(f"Retrain cooldown active ({elapsed:.0f}s of {self.retrain_interval_seconds:.0f}s)")
                    return False

            sample_count = self.store.count()
            if sample_count < self.min_samples_for_retrain:
                logger.debug(f"Not enough samples for retraining: {sample_count}/{self.min_samples_for_retrain}")
                return False

            job = RetrainingJob.scheduled(now, sample_count, forced=force)
            if self.job_log is not None:
                self.job_log.append(job)
            self._last_retrain = now

        logger.info(f"Retraining triggered with {sample_count} samples{' (forced)' if force else ''}")
        if self.on_retrain is not None:
            try:
                self.on_retrain(job)
            except Exception as e:
                logger.error(f"Retraining callback failed for {job.job_id}: {e}")
        return True

    def _safe_check(self, force: bool) -> bool:
        try:
            return self.check_retraining_trigger(force=force)
        except Exception as e:
            logger.error(f"Retraining check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_learning_stats(self) -> LearningStats:
        """Aggregate store contents; an empty store gives zeroed stats."""
        stats = LearningStats()
        ratings = []
        for sample in self.store.iter_samples():
            stats.total_samples += 1
            if sample.user_rating is not None:
                ratings.append(sample.user_rating)
            if sample.expert_validation:
                stats.expert_validations += 1

        stats.total_images = self.store.count_images()
        stats.user_feedback_count = len(ratings)
        stats.average_user_rating = sum(ratings) / len(ratings) if ratings else 0.0
        stats.samples_until_retrain = max(0, self.min_samples_for_retrain - self.store.count())

        if self._last_retrain is not None:
            stats.last_retraining = _iso(self._last_retrain)
            stats.next_retraining = _iso(self._last_retrain + self.retrain_interval_seconds)
        return stats

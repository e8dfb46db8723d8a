"""Sample collection and the continuous learning feedback loop."""
from .records import CaptureContext, LabelCorrections, SampleLabels, SampleMetadata, TrainingSample
from .sample_store import SampleStore
from .coordinator import ContinuousLearningCoordinator, LearningStats

__all__ = [
    "CaptureContext",
    "LabelCorrections",
    "SampleLabels",
    "SampleMetadata",
    "TrainingSample",
    "SampleStore",
    "ContinuousLearningCoordinator",
    "LearningStats",
]

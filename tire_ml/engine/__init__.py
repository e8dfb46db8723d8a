"""Analysis results, the inference client and the model server engine."""
from .analysis import (
    CONDITION_LABELS,
    WEAR_PATTERNS,
    SEVERITIES,
    AnalysisOutcome,
    AnalysisSource,
    MockAnalyzer,
    TireAnalysisResult,
)
from .inference import InferenceService

__all__ = [
    "CONDITION_LABELS",
    "WEAR_PATTERNS",
    "SEVERITIES",
    "AnalysisOutcome",
    "AnalysisSource",
    "MockAnalyzer",
    "TireAnalysisResult",
    "InferenceService",
]

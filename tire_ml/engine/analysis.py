"""
Tire Analysis Results
=====================
Result types shared by the inference client and the model server, plus the
mock analyzer used when no model server is reachable.
"""

import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

# Label sets - MUST match training task order!
CONDITION_LABELS = ["excellent", "good", "fair", "poor", "critical"]
WEAR_PATTERNS = ["uniform", "inner", "outer", "random"]
SEVERITIES = ["low", "medium", "high"]

MIN_TREAD_DEPTH_MM = 0.0
MAX_TREAD_DEPTH_MM = 10.0


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def clamp_tread_depth(value: float) -> float:
    """Clamp a raw regression output to the physical tread range."""
    return max(MIN_TREAD_DEPTH_MM, min(MAX_TREAD_DEPTH_MM, float(value)))


def normalize_scores(scores: Mapping[str, float], labels: List[str]) -> Dict[str, float]:
    """
    Complete a score mapping over ``labels`` and rescale it to sum to 1.

    Negative and unknown entries are dropped; an all-zero mapping becomes
    uniform.
    """
    cleaned = {label: max(0.0, float(scores.get(label, 0.0) or 0.0)) for label in labels}
    total = sum(cleaned.values())
    if total <= 0:
        return {label: 1.0 / len(labels) for label in labels}
    return {label: value / total for label, value in cleaned.items()}


def wear_severity(pattern: str, tread_depth: Optional[float]) -> str:
    """
    Severity of a wear pattern.

    Uniform wear is always low; uneven wear scales with how little tread is
    left (unknown depth counts as medium).
    """
    if pattern == "uniform":
        return "low"
    if tread_depth is None:
        return "medium"
    if tread_depth < 3.0:
        return "high"
    if tread_depth < 5.0:
        return "medium"
    return "low"


class AnalysisSource(str, Enum):
    """Which path produced an analysis."""
    MODEL = "model"
    MOCK = "mock"


@dataclass
class TreadDepthResult:
    value: float
    confidence: float
    unit: str = "mm"

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "unit": self.unit, "confidence": self.confidence}


@dataclass
class ConditionResult:
    label: str
    confidence: float
    scores: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "confidence": self.confidence, "scores": dict(self.scores)}

    @classmethod
    def from_scores(cls, scores: Mapping[str, float]) -> "ConditionResult":
        """Build from raw scores; confidence is the normalized argmax score."""
        normalized = normalize_scores(scores, CONDITION_LABELS)
        label = max(CONDITION_LABELS, key=lambda name: normalized[name])
        return cls(label=label, confidence=normalized[label], scores=normalized)


@dataclass
class WearPatternResult:
    pattern: str
    confidence: float
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": self.pattern, "confidence": self.confidence, "severity": self.severity}


@dataclass
class AnalysisMetadata:
    analyzed_at: str
    image_size: int
    processing_time: float
    models_used: List[str] = field(default_factory=list)
    filled_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "analyzedAt": self.analyzed_at,
            "imageSize": self.image_size,
            "processingTime": self.processing_time,
            "modelsUsed": list(self.models_used),
        }
        if self.filled_fields:
            data["filledFields"] = list(self.filled_fields)
        return data


@dataclass
class TireAnalysisResult:
    """Complete analysis of one tire image."""
    tread_depth: TreadDepthResult
    condition: ConditionResult
    wear_pattern: WearPatternResult
    metadata: AnalysisMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treadDepth": self.tread_depth.to_dict(),
            "condition": self.condition.to_dict(),
            "wearPattern": self.wear_pattern.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class AnalysisOutcome:
    """An analysis together with the path that produced it."""
    source: AnalysisSource
    result: TireAnalysisResult

    @property
    def is_mock(self) -> bool:
        return self.source is AnalysisSource.MOCK

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source.value, "analysis": self.result.to_dict()}


class MockAnalyzer:
    """
    Randomized analysis with a fixed shape.

    Used whenever the model server is unreachable so callers always receive
    a valid result.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def tread_depth(self) -> TreadDepthResult:
        # Realistic tread depth between 1-10mm
        value = round(1 + self.rng.random() * 9, 2)
        return TreadDepthResult(value=value, confidence=0.75 + self.rng.random() * 0.2)

    def condition(self) -> ConditionResult:
        chosen = self.rng.choice(CONDITION_LABELS)
        raw = {
            label: (0.6 + self.rng.random() * 0.3) if label == chosen else self.rng.random() * 0.2
            for label in CONDITION_LABELS
        }
        return ConditionResult.from_scores(raw)

    def wear_pattern(self) -> WearPatternResult:
        return WearPatternResult(
            pattern=self.rng.choice(WEAR_PATTERNS),
            confidence=0.7 + self.rng.random() * 0.25,
            severity=self.rng.choice(SEVERITIES),
        )

    def analyze(self, image_size: int, processing_time: float = 0.0) -> TireAnalysisResult:
        return TireAnalysisResult(
            tread_depth=self.tread_depth(),
            condition=self.condition(),
            wear_pattern=self.wear_pattern(),
            metadata=AnalysisMetadata(
                analyzed_at=utc_now_iso(),
                image_size=image_size,
                processing_time=processing_time,
            ),
        )


def _unit_interval(value: Any, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(value):
        return default
    return max(0.0, min(1.0, value))


def result_from_server_payload(
    payload: Mapping[str, Any],
    mock: MockAnalyzer,
    image_size: int,
    processing_time: float = 0.0,
) -> TireAnalysisResult:
    """
    Map a model server ``analysis`` payload into a ``TireAnalysisResult``.

    Tread depth is clamped, condition scores are completed and renormalized,
    and any part the server left out (model not loaded) is filled from the
    mock generator and listed in ``metadata.filled_fields``.
    """
    filled = []

    tread = payload.get("treadDepth") or {}
    if isinstance(tread, Mapping) and tread.get("value") is not None:
        tread_depth = TreadDepthResult(
            value=clamp_tread_depth(tread["value"]),
            confidence=_unit_interval(tread.get("confidence"), 0.85),
            unit=tread.get("unit", "mm"),
        )
    else:
        tread_depth = mock.tread_depth()
        filled.append("treadDepth")

    condition_payload = payload.get("condition") or {}
    scores = condition_payload.get("scores") if isinstance(condition_payload, Mapping) else None
    if isinstance(scores, Mapping) and scores:
        condition = ConditionResult.from_scores(scores)
    else:
        condition = mock.condition()
        filled.append("condition")

    wear = payload.get("wearPattern") or {}
    if isinstance(wear, Mapping) and wear.get("pattern") in WEAR_PATTERNS:
        severity = wear.get("severity")
        if severity not in SEVERITIES:
            severity = wear_severity(wear["pattern"], tread_depth.value)
        wear_pattern = WearPatternResult(
            pattern=wear["pattern"],
            confidence=_unit_interval(wear.get("confidence"), 0.0),
            severity=severity,
        )
    else:
        wear_pattern = mock.wear_pattern()
        filled.append("wearPattern")

    server_meta = payload.get("metadata") or {}
    return TireAnalysisResult(
        tread_depth=tread_depth,
        condition=condition,
        wear_pattern=wear_pattern,
        metadata=AnalysisMetadata(
            analyzed_at=server_meta.get("analyzedAt") or utc_now_iso(),
            image_size=int(server_meta.get("imageSize") or image_size),
            processing_time=processing_time,
            models_used=list(server_meta.get("modelsUsed") or []),
            filled_fields=filled,
        ),
    )

"""
Sample Records
==============
Training sample, capture context and label correction records.

Label files are written with camel-case keys; ``to_dict``/``from_dict``
round-trip field for field.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..engine.analysis import CONDITION_LABELS, MAX_TREAD_DEPTH_MM, WEAR_PATTERNS
from ..errors import ValidationError

CORRECTION_KEYS = ("treadDepth", "condition", "wearPattern")


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class SampleLabels:
    """Labels attached to a sample; every field is optional."""
    tread_depth: Optional[float] = None
    condition: Optional[str] = None
    wear_pattern: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.tread_depth, self.condition, self.wear_pattern, self.confidence)
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "treadDepth": self.tread_depth,
            "condition": self.condition,
            "wearPattern": self.wear_pattern,
            "confidence": self.confidence,
        })

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SampleLabels":
        data = data or {}
        return cls(
            tread_depth=data.get("treadDepth"),
            condition=data.get("condition"),
            wear_pattern=data.get("wearPattern"),
            confidence=data.get("confidence"),
        )


@dataclass
class CaptureContext:
    """Context handed over by the photo-upload collaborator. Never validated."""
    vehicle_id: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None
    lighting: Optional[str] = None
    angle: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class SampleMetadata:
    """Capture metadata stored with a sample."""
    timestamp: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None
    lighting: Optional[str] = None
    angle: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "timestamp": self.timestamp,
            "deviceInfo": self.device_info,
            "lighting": self.lighting,
            "angle": self.angle,
            "userId": self.user_id,
        })

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SampleMetadata":
        data = data or {}
        return cls(
            timestamp=data.get("timestamp"),
            device_info=data.get("deviceInfo"),
            lighting=data.get("lighting"),
            angle=data.get("angle"),
            user_id=data.get("userId"),
        )

    @classmethod
    def from_context(cls, context: Optional[CaptureContext], timestamp: str) -> "SampleMetadata":
        context = context or CaptureContext()
        return cls(
            timestamp=timestamp,
            device_info=context.device_info,
            lighting=context.lighting,
            angle=context.angle,
            user_id=context.user_id,
        )


@dataclass
class LabelCorrections:
    """
    User or expert corrections to a sample's labels.

    Call ``validate()`` before applying; values outside the fixed label sets
    or the physical tread range raise ``ValidationError``.
    """
    tread_depth: Optional[float] = None
    condition: Optional[str] = None
    wear_pattern: Optional[str] = None

    def fields_set(self) -> List[str]:
        return [name for name, value in (
            ("treadDepth", self.tread_depth),
            ("condition", self.condition),
            ("wearPattern", self.wear_pattern),
        ) if value is not None]

    @property
    def is_empty(self) -> bool:
        return not self.fields_set()

    def validate(self) -> "LabelCorrections":
        if self.tread_depth is not None:
            if isinstance(self.tread_depth, bool) or not isinstance(self.tread_depth, (int, float)):
                raise ValidationError(f"treadDepth must be a number, got {self.tread_depth!r}")
            if math.isnan(self.tread_depth) or not (0 <= self.tread_depth <= MAX_TREAD_DEPTH_MM):
                raise ValidationError(
                    f"treadDepth must be within [0, {MAX_TREAD_DEPTH_MM:g}] mm, "
                    f"got {self.tread_depth}"
                )
        if self.condition is not None and self.condition not in CONDITION_LABELS:
            raise ValidationError(
                f"Unknown condition {self.condition!r}",
                hint=f"Expected one of: {', '.join(CONDITION_LABELS)}",
            )
        if self.wear_pattern is not None and self.wear_pattern not in WEAR_PATTERNS:
            raise ValidationError(
                f"Unknown wear pattern {self.wear_pattern!r}",
                hint=f"Expected one of: {', '.join(WEAR_PATTERNS)}",
            )
        return self

    def merged_with(self, newer: "LabelCorrections") -> "LabelCorrections":
        """Field-by-field merge; fields set on ``newer`` win."""
        return LabelCorrections(
            tread_depth=newer.tread_depth if newer.tread_depth is not None else self.tread_depth,
            condition=newer.condition if newer.condition is not None else self.condition,
            wear_pattern=newer.wear_pattern if newer.wear_pattern is not None else self.wear_pattern,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "treadDepth": self.tread_depth,
            "condition": self.condition,
            "wearPattern": self.wear_pattern,
        })

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LabelCorrections":
        """Build from camel-case keys; unknown keys raise ``ValidationError``."""
        data = data or {}
        unknown = sorted(set(data) - set(CORRECTION_KEYS))
        if unknown:
            raise ValidationError(
                f"Unknown correction fields: {', '.join(map(str, unknown))}",
                hint=f"Expected any of: {', '.join(CORRECTION_KEYS)}",
            )
        return cls(
            tread_depth=data.get("treadDepth"),
            condition=data.get("condition"),
            wear_pattern=data.get("wearPattern"),
        )


@dataclass
class TrainingSample:
    """One captured observation used for training and evaluation."""
    id: str
    image_path: Optional[str]
    tire_id: str
    vehicle_id: Optional[str] = None
    labels: SampleLabels = field(default_factory=SampleLabels)
    metadata: SampleMetadata = field(default_factory=SampleMetadata)
    user_rating: Optional[int] = None
    user_corrections: Optional[LabelCorrections] = None
    expert_validation: bool = False
    feedback_provided_at: Optional[str] = None
    analysis_source: Optional[str] = None

    @property
    def has_labels(self) -> bool:
        return not self.labels.is_empty

    def apply_corrections(self, corrections: LabelCorrections):
        """Merge corrections and overwrite the matching labels."""
        if corrections.is_empty:
            return
        previous = self.user_corrections or LabelCorrections()
        self.user_corrections = previous.merged_with(corrections)
        if corrections.tread_depth is not None:
            self.labels.tread_depth = float(corrections.tread_depth)
        if corrections.condition is not None:
            self.labels.condition = corrections.condition
        if corrections.wear_pattern is not None:
            self.labels.wear_pattern = corrections.wear_pattern
        self.expert_validation = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "imagePath": self.image_path,
            "tireId": self.tire_id,
            "vehicleId": self.vehicle_id,
            "labels": self.labels.to_dict(),
            "metadata": self.metadata.to_dict(),
            "userRating": self.user_rating,
            "userCorrections": self.user_corrections.to_dict() if self.user_corrections else None,
            "expertValidation": self.expert_validation,
            "feedbackProvidedAt": self.feedback_provided_at,
            "analysisSource": self.analysis_source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingSample":
        corrections = data.get("userCorrections")
        return cls(
            id=data["id"],
            image_path=data.get("imagePath"),
            tire_id=data.get("tireId"),
            vehicle_id=data.get("vehicleId"),
            labels=SampleLabels.from_dict(data.get("labels")),
            metadata=SampleMetadata.from_dict(data.get("metadata")),
            user_rating=data.get("userRating"),
            user_corrections=LabelCorrections.from_dict(corrections) if corrections is not None else None,
            expert_validation=bool(data.get("expertValidation", False)),
            feedback_provided_at=data.get("feedbackProvidedAt"),
            analysis_source=data.get("analysisSource"),
        )

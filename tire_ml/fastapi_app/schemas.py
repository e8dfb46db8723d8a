"""
Pydantic Schemas
================
Request and response schemas for the model server and the learning API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Error Response
class ErrorResponse(BaseModel):
    """Error body used by every endpoint."""
    error: str = Field(..., description="Error message")
    details: Optional[Any] = Field(None, description="Additional details")


# ============================================================
# Model Server
# ============================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy, or degraded when no model is loaded")
    models: List[str] = Field(..., description="Loaded model names")
    timestamp: str = Field(..., description="Check timestamp")


class AnalyzeResponse(BaseModel):
    """Single image analysis."""
    success: bool = True
    analysis: Dict[str, Any] = Field(..., description="Parts of the analysis backed by loaded models")
    timestamp: str


class BatchResultItem(BaseModel):
    """Single item in batch results."""
    filename: Optional[str] = Field(None, description="Original filename")
    analysis: Optional[Dict[str, Any]] = None
    error: Optional[str] = Field(None, description="Error message if this image failed")


class BatchAnalyzeResponse(BaseModel):
    """Batch analysis response."""
    success: bool = True
    results: List[BatchResultItem]
    timestamp: str


class ModelStatus(BaseModel):
    """Load state and shapes of one model."""
    model_config = ConfigDict(populate_by_name=True)

    loaded: bool
    input_shape: Optional[List[Optional[int]]] = Field(None, alias="inputShape")
    output_shape: Optional[List[Optional[int]]] = Field(None, alias="outputShape")
    version: Optional[int] = None
    data_source: Optional[str] = Field(None, alias="dataSource")


# ============================================================
# Learning API
# ============================================================

class CorrectionsPayload(BaseModel):
    """Corrected label values; unknown keys are rejected."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    tread_depth: Optional[float] = Field(None, alias="treadDepth", description="Tread depth in mm")
    condition: Optional[str] = Field(None, description="excellent, good, fair, poor or critical")
    wear_pattern: Optional[str] = Field(None, alias="wearPattern", description="uniform, inner, outer or random")


class FeedbackRequest(BaseModel):
    """User rating of an analysis, with optional corrections."""
    model_config = ConfigDict(populate_by_name=True)

    tire_id: str = Field(..., alias="tireId")
    sample_id: str = Field(..., alias="sampleId")
    user_rating: int = Field(..., alias="userRating", description="1-5")
    corrections: Optional[CorrectionsPayload] = None


class FeedbackResponse(BaseModel):
    success: bool = True
    message: str
    data: Dict[str, Any]


class CaptureResponse(BaseModel):
    success: bool = True
    sample: Dict[str, Any]


class StatsResponse(BaseModel):
    success: bool = True
    stats: Dict[str, Any]
    timestamp: str


class LearningAnalyzeResponse(BaseModel):
    success: bool = True
    source: str = Field(..., description="model or mock")
    analysis: Dict[str, Any]

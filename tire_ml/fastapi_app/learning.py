"""
Learning API
============
Photo capture, user feedback, learning statistics and on-demand analysis.

Handlers delegate to the ``ServiceContainer`` stored on ``app.state``.
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..bootstrap import ServiceContainer, build_container
from ..config.settings import Settings, get_settings
from ..engine.analysis import utc_now_iso
from ..errors import ValidationError
from ..feedback.records import CaptureContext, LabelCorrections
from ..utils.logger import RequestLogger
from .dependencies import get_coordinator, get_inference
from .middleware import install_error_handlers, install_middleware
from .schemas import (
    CaptureResponse,
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    LearningAnalyzeResponse,
    StatsResponse,
)

logger = logging.getLogger(__name__)

learning_router = APIRouter(prefix="/api/learning", tags=["Continuous Learning"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _parse_device_info(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise ValidationError("deviceInfo must be a JSON object", hint=str(e)) from e
    if not isinstance(value, dict):
        raise ValidationError("deviceInfo must be a JSON object")
    return value


@learning_router.post("/photos", response_model=CaptureResponse, responses=ERROR_RESPONSES)
async def capture_photo(
    image: UploadFile = File(..., description="Tire photo"),
    tire_id: str = Form(..., alias="tireId"),
    vehicle_id: Optional[str] = Form(None, alias="vehicleId"),
    lighting: Optional[str] = Form(None),
    angle: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    device_info: Optional[str] = Form(None, alias="deviceInfo"),
    coordinator=Depends(get_coordinator),
):
    """Store an uploaded photo as a training sample, labelled by the current models."""
    context = CaptureContext(
        vehicle_id=vehicle_id,
        device_info=_parse_device_info(device_info),
        lighting=lighting,
        angle=angle,
        user_id=user_id,
    )
    image_bytes = await image.read()
    sample = await run_in_threadpool(coordinator.on_photo_captured, tire_id, image_bytes, context)
    return CaptureResponse(sample=sample.to_dict())


@learning_router.post("/feedback", response_model=FeedbackResponse, responses=ERROR_RESPONSES)
async def submit_feedback(body: FeedbackRequest, coordinator=Depends(get_coordinator)):
    """Record a rating and optional label corrections for a sample."""
    corrections = None
    if body.corrections is not None:
        corrections = LabelCorrections(
            tread_depth=body.corrections.tread_depth,
            condition=body.corrections.condition,
            wear_pattern=body.corrections.wear_pattern,
        )
    sample = await run_in_threadpool(
        coordinator.on_user_feedback, body.tire_id, body.sample_id, body.user_rating, corrections
    )
    return FeedbackResponse(message="Feedback recorded", data=sample.to_dict())


@learning_router.get("/stats", response_model=StatsResponse)
async def learning_stats(coordinator=Depends(get_coordinator)):
    stats = await run_in_threadpool(coordinator.get_learning_stats)
    return StatsResponse(stats=stats.to_dict(), timestamp=utc_now_iso())


@learning_router.post("/analyze", response_model=LearningAnalyzeResponse, responses=ERROR_RESPONSES)
async def analyze_photo(
    image: UploadFile = File(..., description="Tire photo"),
    inference=Depends(get_inference),
):
    """Analyze a photo without storing it; falls back to mock analysis."""
    image_bytes = await image.read()
    outcome = await run_in_threadpool(inference.analyze, image_bytes)
    return LearningAnalyzeResponse(source=outcome.source.value, analysis=outcome.result.to_dict())


@learning_router.get("/analyze")
async def analysis_status(inference=Depends(get_inference)):
    """Model server availability and model list."""
    return await run_in_threadpool(inference.get_model_status)


def create_learning_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the learning API application.

    Args:
        container: Pre-built services (tests inject one with fakes)
        settings: Used to build the container when none is given
    """
    settings = settings or (container.settings if container else get_settings())
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Learning API shutting down")
        container.orchestrator.shutdown()

    app = FastAPI(
        title="Tire ML Learning API",
        description="Photo capture, feedback and statistics for continuous tire model learning",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.start_time = time.time()
    app.state.settings = settings
    app.state.container = container
    app.state.request_logger = RequestLogger()

    install_middleware(app, settings.CORS_ORIGINS)
    install_error_handlers(app)
    app.include_router(learning_router)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "learning-api",
            "uptime": time.time() - app.state.start_time,
            "timestamp": utc_now_iso(),
        }

    logger.info("Learning API created")
    return app

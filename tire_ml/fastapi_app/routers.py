"""
FastAPI Routers
===============
Model server endpoints: health, single and batch analysis, model listing.
"""

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..config.settings import Settings
from ..engine.analysis import utc_now_iso
from ..errors import PayloadTooLargeError, ValidationError
from .dependencies import get_app_settings, get_engine, get_request_logger
from .schemas import (
    AnalyzeResponse,
    BatchAnalyzeResponse,
    BatchResultItem,
    ErrorResponse,
    HealthResponse,
    ModelStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Model Server"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get("/health", response_model=HealthResponse)
async def health_check(engine=Depends(get_engine)):
    """
    Health check endpoint.

    Answers 200 whenever the process is up; ``status`` is ``degraded`` while
    no model is loaded.
    """
    return HealthResponse(
        status="healthy" if engine.is_ready else "degraded",
        models=engine.loaded_models,
        timestamp=utc_now_iso(),
    )


@router.post("/analyze", response_model=AnalyzeResponse, responses=ERROR_RESPONSES)
async def analyze(
    request: Request,
    image: UploadFile = File(..., description="Tire image to analyze"),
    engine=Depends(get_engine),
    request_logger=Depends(get_request_logger),
):
    """Analyze one tire image with every loaded model."""
    image_bytes = await image.read()
    analysis = await run_in_threadpool(engine.analyze_image, image_bytes)

    if request_logger is not None:
        request_logger.log_analysis(
            getattr(request.state, "request_id", "-"),
            analysis["metadata"]["modelsUsed"],
            analysis["metadata"]["processingTime"],
            condition=analysis.get("condition", {}).get("label"),
            tread_depth=analysis.get("treadDepth", {}).get("value"),
        )
    return AnalyzeResponse(analysis=analysis, timestamp=utc_now_iso())


@router.post("/analyze/batch", response_model=BatchAnalyzeResponse, responses=ERROR_RESPONSES)
async def analyze_batch(
    images: List[UploadFile] = File(..., description="Tire images to analyze"),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_app_settings),
):
    """
    Batch analysis.

    Images that fail to decode get an ``error`` entry instead of failing the
    whole batch.
    """
    if len(images) > settings.BATCH_SIZE_LIMIT:
        raise ValidationError(
            f"Maximum batch size is {settings.BATCH_SIZE_LIMIT} images, got {len(images)}",
            hint="Split the request into smaller batches.",
        )

    results = []
    for i, image in enumerate(images):
        filename = image.filename or f"image_{i}"
        image_bytes = await image.read()
        try:
            analysis = await run_in_threadpool(engine.analyze_image, image_bytes)
            results.append(BatchResultItem(filename=filename, analysis=analysis))
        except (ValidationError, PayloadTooLargeError) as e:
            logger.info(f"Batch item {filename} rejected: {e.message}")
            results.append(BatchResultItem(filename=filename, error=e.message))

    return BatchAnalyzeResponse(results=results, timestamp=utc_now_iso())


@router.get("/models", response_model=Dict[str, ModelStatus], response_model_by_alias=True)
async def list_models(engine=Depends(get_engine)):
    """Load state and shapes of every known model."""
    return engine.model_info()

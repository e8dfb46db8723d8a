"""
FastAPI Application Factory
===========================
Create and configure the model server.

The pipeline's deployment phase runs this module as
``python -m tire_ml.fastapi_app.main --port ... --models-dir ...``.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Union

from fastapi import FastAPI

from ..config.settings import Settings, get_settings
from ..engine.model_registry import ModelStore
from ..engine.pytorch_inference import ModelServerEngine
from ..utils.logger import RequestLogger
from .middleware import install_error_handlers, install_middleware
from .routers import router

logger = logging.getLogger(__name__)


def create_app(
    models_dir: Optional[Union[str, Path]] = None,
    settings: Optional[Settings] = None,
    engine: Optional[ModelServerEngine] = None,
) -> FastAPI:
    """
    Create and configure the model server application.

    Args:
        models_dir: Artifact directory; defaults to ``settings.MODELS_DIR``
        settings: Application settings
        engine: Pre-built engine (skips loading from ``models_dir``)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    if engine is None:
        engine = ModelServerEngine(
            ModelStore(models_dir or settings.MODELS_DIR),
            device=settings.TRAINING_DEVICE,
            max_bytes=settings.MAX_FILE_SIZE,
        )
        status = engine.load_all()
        if not any(status.values()):
            logger.warning("No models loaded, the server will report degraded health")

    app = FastAPI(
        title="Tire Analysis Model Server",
        description="Tread depth, condition and wear pattern analysis of tire images",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Store start time
    app.state.start_time = time.time()
    app.state.settings = settings
    app.state.engine = engine
    app.state.request_logger = RequestLogger()

    install_middleware(app, settings.CORS_ORIGINS)
    install_error_handlers(app)
    app.include_router(router)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "name": "Tire Analysis Model Server",
            "version": settings.APP_VERSION,
            "status": "running",
            "models": engine.loaded_models,
            "documentation": "/docs",
        }

    logger.info("FastAPI application created successfully")

    return app


def run_app(
    host: str = "0.0.0.0",
    port: int = 3001,
    models_dir: Optional[str] = None,
):
    """
    Run the model server.

    Args:
        host: Host to bind to
        port: Port to bind to
        models_dir: Artifact directory
    """
    import uvicorn

    app = create_app(models_dir=models_dir)

    logger.info(f"Starting model server on {host}:{port}")

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    import argparse

    from ..utils.logger import setup_logging

    parser = argparse.ArgumentParser(description="Run the tire analysis model server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=3001, help="Port to bind to")
    parser.add_argument("--models-dir", help="Directory holding the model artifacts")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    setup_logging(level=args.log_level)
    run_app(host=args.host, port=args.port, models_dir=args.models_dir)

"""
Middleware and Error Handlers
=============================
Shared by the model server and the learning API.

Every error leaves the process as ``{"error": ..., "details": ...}``.
"""

import logging
import time
import uuid
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import TireMLError
from ..utils.logger import RequestLogger

logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, details=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


def install_middleware(app: FastAPI, cors_origins: Optional[List[str]] = None):
    """CORS, request logging, timing and security headers."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add timing middleware
    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        request_id = uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        request_logger: Optional[RequestLogger] = getattr(request.app.state, "request_logger", None)
        if request_logger is not None:
            client = request.client.host if request.client else "unknown"
            request_logger.log_request(request_id, request.method, request.url.path, client)

        start_time = time.time()
        response = await call_next(request)
        elapsed = (time.time() - start_time) * 1000
        response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"
        response.headers["X-Request-ID"] = request_id

        if request_logger is not None:
            request_logger.log_response(request_id, response.status_code, elapsed)
        return response

    # Add security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def _log_server_error(request: Request, exc: Exception, message: str):
    request_logger: Optional[RequestLogger] = getattr(request.app.state, "request_logger", None)
    if request_logger is not None:
        request_logger.log_error(getattr(request.state, "request_id", "-"), type(exc).__name__, message)


def install_error_handlers(app: FastAPI):
    """Map the error hierarchy and framework errors to ``{error, details}``."""

    @app.exception_handler(TireMLError)
    async def tire_ml_error_handler(request: Request, exc: TireMLError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
            _log_server_error(request, exc, exc.message)
        else:
            logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.message, exc.hint or type(exc).__name__)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(400, "Invalid request", jsonable_encoder(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), None)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        _log_server_error(request, exc, str(exc))
        return error_response(500, "An internal server error occurred", type(exc).__name__)

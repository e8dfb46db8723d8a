"""
FastAPI Dependencies
====================
Services are attached to ``app.state`` by the application factories and
handed to routes from there.
"""

from fastapi import Request

from ..config.settings import Settings, get_settings
from ..errors import ModelUnavailableError


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_engine(request: Request):
    """The model server engine; 503 when none was configured."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ModelUnavailableError("Inference engine is not configured")
    return engine


def get_request_logger(request: Request):
    return getattr(request.app.state, "request_logger", None)


def get_coordinator(request: Request):
    return request.app.state.container.coordinator


def get_inference(request: Request):
    return request.app.state.container.inference

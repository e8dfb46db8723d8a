#!/usr/bin/env python3
"""
Learning API startup script.

Serves photo capture, feedback and learning statistics. The model server is
a separate process (``python -m tire_ml.fastapi_app.main``) that the
pipeline starts and restarts on deployment.
"""
import argparse
import logging

from tire_ml.config.settings import ensure_directories, get_settings
from tire_ml.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the tire ML learning API")
    parser.add_argument("--host", default=settings.HOST, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Port to bind to")
    args = parser.parse_args()

    ensure_directories(settings)
    setup_logging(
        level=settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR if settings.LOG_TO_FILE else None,
        format_string=settings.LOG_FORMAT,
    )

    import uvicorn
    from tire_ml.fastapi_app.learning import create_learning_app

    logger.info("=" * 60)
    logger.info("TIRE ML LEARNING API")
    logger.info("=" * 60)
    logger.info(f"Data directory: {settings.DATA_DIR}")
    logger.info(f"Model server: {settings.ML_SERVER_URL}")
    logger.info(f"Retrain after {settings.MIN_SAMPLES_FOR_RETRAIN} samples, "
                f"at most every {settings.RETRAIN_INTERVAL_HOURS:g} hours")

    app = create_learning_app(settings=settings)

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    logger.info(f"API Documentation: http://localhost:{args.port}/docs")

    # Configure uvicorn logging with timestamps
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s - %(levelprefix)s %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(asctime)s - %(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        },
    }

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=log_config,
        timeout_keep_alive=60,
    )


if __name__ == "__main__":
    main()

"""
Logging Configuration
=====================
Centralized logging setup for the learning API, model server and pipeline.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        # Color a copy so file handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    format_string: Optional[str] = None,
    colored: bool = True,
    file_prefix: str = "tire_ml",
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Specific log file path
        log_dir: Directory for log files (auto-named by date)
        format_string: Custom format string
        colored: Use colored console output
        file_prefix: Prefix of the dated log file name

    Returns:
        Root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if colored and sys.stdout.isatty():
        console_formatter = ColoredFormatter(format_string)
    else:
        console_formatter = logging.Formatter(format_string)

    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file or log_dir:
        if log_file:
            file_path = Path(log_file)
        else:
            log_dir = Path(log_dir)
            date_str = datetime.now().strftime("%Y-%m-%d")
            file_path = log_dir / f"{file_prefix}_{date_str}.log"

        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {file_path}")

    return root_logger


class RequestLogger:
    """
    Logger for API requests with structured output.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("request")

    def log_request(self, request_id: str, method: str, path: str, ip: str):
        """Log incoming request."""
        self.logger.info(f"REQUEST {request_id} | {method} {path} | IP: {ip}")

    def log_response(self, request_id: str, status_code: int, response_time_ms: float):
        """Log outgoing response."""
        level = logging.INFO if status_code < 400 else logging.WARNING
        self.logger.log(
            level,
            f"RESPONSE {request_id} | Status: {status_code} | Time: {response_time_ms:.2f}ms"
        )

    def log_error(self, request_id: str, error_type: str, error_message: str):
        """Log error."""
        self.logger.error(f"ERROR {request_id} | {error_type}: {error_message}")

    def log_analysis(
        self,
        request_id: str,
        models_used: Iterable[str],
        analysis_time_ms: float,
        condition: Optional[str] = None,
        tread_depth: Optional[float] = None,
    ):
        """Log a tire analysis."""
        models = ", ".join(models_used) or "none"
        depth = f"{tread_depth:.2f}mm" if tread_depth is not None else "n/a"
        self.logger.info(
            f"ANALYSIS {request_id} | Models: {models} | "
            f"Time: {analysis_time_ms:.2f}ms | "
            f"Condition: {condition or 'n/a'} | Tread: {depth}"
        )

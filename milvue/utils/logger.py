"""
Logging utilities for the Milvue client.

This module provides a unified logging interface using loguru. Standard library
logging (httpx, httpcore) is intercepted and redirected to loguru.

Importing the package configures nothing: applications (such as the ``milvue``
CLI) call :func:`setup_logging` themselves.
"""

import inspect
import logging
import sys
from pathlib import Path

from loguru import logger as _logger

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

NO_TIME_FORMAT = "<level>{level: <8}</level> | <level>{message}</level>"


class InterceptHandler(logging.Handler):
    """
    Logging handler intercepting standard library logs and redirecting to loguru.
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding loguru level if it exists
        level: str | int
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logged message originated
        frame, depth = inspect.currentframe(), 0
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str = "INFO",
    format: str | None = None,
    log_to_file: bool = False,
    log_file: str | Path | None = None,
    rotation: str = "20 MB",
    retention: str = "1 week",
    serialize: bool = False,
) -> None:
    """
    Configure logging for the client.

    Args:
        level: Minimum log level to capture, or "QUIET" to disable console output
        format: Log message format string
        log_to_file: Whether to log to a file in addition to console
        log_file: Path to log file (will be created if doesn't exist)
        rotation: When to rotate log files (size or time)
        retention: How long to keep log files
        serialize: Whether to serialize logs as JSON
    """
    if format is None:
        format = DEFAULT_FORMAT

    _logger.remove()

    if level.upper() != "QUIET":
        _logger.add(
            sys.stderr,
            level=level.upper(),
            format=format,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    if log_to_file and log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        _logger.add(
            str(log_path),
            level="INFO" if level.upper() == "QUIET" else level.upper(),
            format=format,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
            backtrace=True,
            diagnose=False,
        )

    # Intercept standard library logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Keep transport libraries quiet unless debugging
    for log_name in ["httpx", "httpcore"]:
        lib_logger = logging.getLogger(log_name)
        lib_logger.handlers = [InterceptHandler()]
        lib_logger.setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING)
        lib_logger.propagate = False


# Export loguru's logger as the module's logger
logger = _logger

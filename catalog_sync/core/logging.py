"""Loguru setup for the API process and the CLI.

Events are logged as snake_case names with structured context:

    logger = get_logger(__name__)
    logger.bind(job_id=str(job.id), processed=1000).info("import_batch_committed")

Stdlib loggers (uvicorn, sqlalchemy, httpx) are forwarded to the same sinks.
"""

import logging
import sys
from typing import Any

from loguru import logger

from catalog_sync.config import get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
PLAIN_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{line} | {message} | {extra}"

FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine", "httpx")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(name=record.name).log(
            level, record.getMessage()
        )


def _quiet_filter(record: dict[str, Any]) -> bool:
    """Drop per-request noise below DEBUG: health checks and icon fetches."""
    if record["level"].no <= logging.DEBUG:
        return True
    message = record["message"]
    return "/health" not in message and "svgs.scryfall.io" not in message


def setup_logging() -> None:
    """Configure loguru sinks from settings. Safe to call more than once."""
    settings = get_settings()
    level = "DEBUG" if settings.debug else settings.log_level.upper()

    logger.remove()
    logger.configure(extra={"name": "catalog_sync"})

    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT if settings.debug else PLAIN_FORMAT,
        colorize=settings.debug,
        filter=None if settings.debug else _quiet_filter,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )

    # Full bulk imports run for many minutes; keep a rotated file when asked to
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=level,
            format=PLAIN_FORMAT,
            rotation="50 MB",
            retention=5,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in FORWARDED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False


def get_logger(name: str) -> Any:
    """Get a logger bound to a module name."""
    return logger.bind(name=name)

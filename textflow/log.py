"""Logging setup built on loguru.

Standard library logging (uvicorn, sqlalchemy, apscheduler) is intercepted and
forwarded to loguru so that every record goes through the same sink.
"""

import inspect
import logging
import sys
from typing import TYPE_CHECKING

from textflow.config import settings

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> | "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller from where the logged message originated
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _setup() -> None:
    logger.remove()
    logger.configure(extra={"name": "TextFlow"})
    logger.add(sys.stderr, level=settings.log_level.upper(), format=LOG_FORMAT, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if settings.debug else logging.WARNING)


def log(name: str) -> "Logger":
    """Get a logger bound to a component name."""
    return logger.bind(name=name)


def system_logger(name: str) -> "Logger":
    """Get a logger for server-level subsystems (startup, security, scheduler)."""
    return logger.bind(name=f"System.{name}")


_setup()

__all__ = ["log", "logger", "system_logger"]

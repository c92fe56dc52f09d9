"""Loguru setup shared by the whole backend.

Import ``logger`` from here rather than from loguru directly so the sink is
configured once. uvicorn, asyncio and SQLAlchemy log through the standard
library; their records are forwarded to the same sink.

Messages use brace placeholders: ``logger.info("user_id={}", uid)``.
"""

import logging
import sys

from loguru import logger

from timekeeper.config.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()

logger.remove()
logger.add(
    sys.stdout,
    level=LOG_LEVEL,
    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}",
    backtrace=True,
    diagnose=False,
)


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # skip frames that belong to the logging module itself
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


logging.basicConfig(handlers=[InterceptHandler()], level=LOG_LEVEL, force=True)

for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "asyncio"):
    stdlib_logger = logging.getLogger(name)
    stdlib_logger.handlers = [InterceptHandler()]
    stdlib_logger.setLevel(LOG_LEVEL)

# NOTE: at INFO SQLAlchemy logs every statement; DB_ECHO controls that instead
logging.getLogger("sqlalchemy").handlers = [InterceptHandler()]
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

__all__ = ["logger", "InterceptHandler"]

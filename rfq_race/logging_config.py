"""
logging_config.py — Centralized Logging Configuration for the RFQ race engine

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so every service's logging.getLogger("rfq_race.*") call
routes through Loguru with the request ID attached.

Business Rules:
- All logs go through Loguru (no print() and no separate stdlib handlers)
- LOG_FORMAT=json emits JSON lines for machine parsing
- Anything else is a human-readable, colourised console format
- request_id is bound per request by the middleware in main.py
  ("-" outside a request)

Called by: main.py (on startup)
Depends on: config.py (log_level, log_format)
"""

import logging
import sys

from loguru import logger

from .config import settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup, before anything else logs.
    """
    logger.remove()
    logger.configure(extra={"request_id": "-"})

    level = (log_level or settings.log_level).upper()
    as_json = (log_format or settings.log_format).lower() == "json"

    if as_json:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
    else:
        logger.add(sys.stdout, level=level, format=CONSOLE_FORMAT, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=level, json=as_json)


class InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals so Loguru reports the caller
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(
            logger_name=record.name
        ).log(level, record.getMessage())

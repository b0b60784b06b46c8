"""Structured logging setup — structlog with stdlib integration."""

from __future__ import annotations

import logging
import sys

import structlog

_configured: bool = False


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog once per process.

    Console rendering in dev, JSON lines when ``json_output`` is set (prod).
    """
    global _configured  # noqa: PLW0603
    if _configured:
        return

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a module-level structured logger."""
    return structlog.get_logger(name)

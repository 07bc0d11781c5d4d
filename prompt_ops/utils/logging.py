"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolved per call so a CLI run always writes to the current stderr
    return structlog.PrintLogger(file=sys.stderr)


def setup_logging(level: str = "INFO", json_logs: bool | None = None) -> None:
    """Configure structured logging.

    Log lines always go to stderr so CLI reports printed on stdout stay
    machine-readable. ``json_logs`` defaults to JSON whenever stderr is not a TTY.
    """
    if json_logs is None:
        json_logs = not sys.stderr.isatty()

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )

"""Structured logging configuration using *structlog*.

The ``state-router`` commands print their JSON result on stdout, so log
lines are written to stderr and piping the result into ``jq`` or a file
never picks up a log event.  Library callers that never call
:func:`setup_logging` get structlog's defaults.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route engine log events to ``stream`` (stderr by default).

    ``level`` is a stdlib level name in any case; unknown names fall back
    to INFO.  A terminal gets the console renderer, anything else gets one
    JSON object per line.
    """
    stream = stream or sys.stderr
    threshold = getattr(logging, level.upper(), logging.INFO)
    renderer = structlog.dev.ConsoleRenderer() if stream.isatty() else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

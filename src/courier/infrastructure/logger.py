"""Structured logging for the courier CLI and task runs.

Events go to stderr so command output on stdout stays clean for scripts.
``LOG_LEVEL`` sets the threshold and ``COURIER_LOG_FORMAT=json`` switches the
console renderer for one JSON object per line.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def setup_logging(log_format: str | None = None) -> structlog.stdlib.BoundLogger:
    """Configure structlog for courier and return the shared logger."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = (log_format or os.environ.get("COURIER_LOG_FORMAT", "console")).lower()

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *([structlog.processors.format_exc_info] if log_format == "json" else []),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), stream=sys.stderr, format="%(message)s")

    return structlog.get_logger("courier")


logger: structlog.stdlib.BoundLogger = setup_logging()


def install_exception_hooks() -> None:
    """Log uncaught CLI exceptions through structlog. Ctrl-C keeps the default hook."""

    def handle_exception(exc_type, exc_value, exc_traceback):  # type: ignore[no-untyped-def]
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.critical("Uncaught exception in courier", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception

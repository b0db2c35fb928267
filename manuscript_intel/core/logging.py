"""Structured logging setup with structlog.

Provides JSON-formatted, context-rich logging for the whole engine.
Automatically binds chapter_id, processing tier and pipeline stage from
context variables set by the pipeline and the scheduler.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TextIO

import structlog

from manuscript_intel.config import Settings, settings

PACKAGE_LOGGER = "manuscript_intel"

# Context variables for automatic log enrichment
chapter_id_var: ContextVar[str | None] = ContextVar("chapter_id", default=None)
processing_tier_var: ContextVar[str | None] = ContextVar("processing_tier", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)


def add_context_vars(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Processor that adds contextvars to every log entry."""
    if (chapter_id := chapter_id_var.get()) is not None:
        event_dict.setdefault("chapter_id", chapter_id)
    if (tier := processing_tier_var.get()) is not None:
        event_dict.setdefault("processing_tier", tier)
    if (stage := stage_var.get()) is not None:
        event_dict.setdefault("stage", stage)
    return event_dict


def setup_logging(
    config: Settings | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure structlog and the ``manuscript_intel`` stdlib logger.

    The engine is embedded in a host application, so only the package
    logger gets a handler; the root logger is left to the host. Calling
    this again replaces the previous handler.

    Args:
        config: Settings providing ``log_level`` and ``log_format``
            ("json" or "console"). Defaults to the module-level settings.
        stream: Output stream, stderr when omitted.

    Returns:
        The configured package logger.
    """
    config = config or settings

    if config.log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None and sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_context_vars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(config.log_level.upper())
    package_logger.propagate = False
    return package_logger


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound structlog logger with automatic context enrichment.
    """
    return structlog.get_logger(name)


@contextmanager
def pipeline_context(chapter_id: str, tier: str) -> Iterator[None]:
    """Bind chapter id and processing tier to every log entry inside the block."""
    chapter_token = chapter_id_var.set(chapter_id)
    tier_token = processing_tier_var.set(tier)
    try:
        yield
    finally:
        processing_tier_var.reset(tier_token)
        chapter_id_var.reset(chapter_token)

"""Structured logging configuration.

Domain services log through structlog bound loggers. Adapters use plain
stdlib ``logging`` loggers; both end up on stdout through the root handler
configured here.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import Processor


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Set up structured logging with structlog."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
        force=True,
    )
    # docker-py and urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors: list[Processor] = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Get a bound logger instance."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


@contextmanager
def job_context(job_id: str, server_id: str, job_type: str) -> Iterator[None]:
    """Bind job identifiers to every log line emitted by the current thread."""
    with structlog.contextvars.bound_contextvars(
        job_id=job_id, server_id=server_id, job_type=job_type
    ):
        yield

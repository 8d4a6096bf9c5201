"""Structured logging for the ingestion runs and the search API.

Events are structlog key/value pairs rendered to stderr, so the CLI's
summaries on stdout stay clean.  Development gets the console renderer
and production gets one JSON object per line.

Two context scopes are bound through ``structlog.contextvars`` so every
event inside them carries the ids without passing loggers around:

* :func:`run_context` binds ``source_id`` and ``run_id`` for one
  ingestion run, including the worker tasks it spawns.
* :func:`request_context` binds ``request_id`` for one HTTP request.

stdlib ``logging`` goes through the same processors.  The chatty
third-party loggers (chromadb, httpx, posthog) are capped at WARNING.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_QUIET_LOGGERS = ("chromadb", "httpx", "httpcore", "posthog", "urllib3")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog and stdlib logging to stderr at *log_level*.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Render JSON lines instead of the console format.
    """
    level = logging.getLevelName(log_level.upper())
    shared = _shared_processors()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=shared,
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Named structlog logger; configures defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


def new_run_id() -> str:
    """Short random id for one ingestion run or HTTP request."""
    return uuid.uuid4().hex[:12]


@contextmanager
def run_context(source_id: str, run_id: str | None = None) -> Iterator[str]:
    """Bind ``source_id`` and ``run_id`` to every event logged inside.

    Tasks created inside the block copy the binding, so per-document
    worker logs carry the run they belong to.  Yields the run id.
    """
    run_id = run_id or new_run_id()
    with structlog.contextvars.bound_contextvars(source_id=source_id, run_id=run_id):
        yield run_id


@contextmanager
def request_context(request_id: str | None = None) -> Iterator[str]:
    """Bind ``request_id`` for one HTTP request.  Yields the id."""
    request_id = request_id or new_run_id()
    with structlog.contextvars.bound_contextvars(request_id=request_id):
        yield request_id

"""Utility modules for chatapp.

- **errors** -- Domain exception hierarchy rooted at ChatAppError; each
  pipeline stage raises its own subclass so the ingestion coordinator can
  isolate per-document failures without broad ``except Exception`` blocks.
- **concurrency** -- bounded asyncio fan-out, retry with backoff, and
  per-key locks used by the ingestion coordinator and the vector stores.
- **logging** -- structlog setup (console in development, JSON lines in
  production) and the run and request context bindings.
"""

from chatapp.utils.concurrency import KeyedLock, retry_async, throttled_gather
from chatapp.utils.errors import (
    ChatAppError,
    ConfigurationError,
    DocumentKeyConflictError,
    EmbeddingServiceError,
    QueryValidationError,
    SearchServiceError,
    SourceReadError,
    StoreError,
    StoreReadError,
    StoreWriteError,
)
from chatapp.utils.logging import configure_logging, get_logger, request_context, run_context

__all__ = [
    "ChatAppError",
    "ConfigurationError",
    "DocumentKeyConflictError",
    "EmbeddingServiceError",
    "KeyedLock",
    "QueryValidationError",
    "SearchServiceError",
    "SourceReadError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "configure_logging",
    "get_logger",
    "request_context",
    "retry_async",
    "run_context",
    "throttled_gather",
]

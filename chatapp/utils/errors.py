"""Custom exception hierarchy for chatapp.

All application exceptions inherit from :class:`ChatAppError`, which
carries an optional ``provider_name`` so error handlers can identify which
collaborator (e.g. "openai", "sqlite", "directory") caused the failure.

The hierarchy is organized by pipeline stage:

    ChatAppError  (base -- catch-all for any chatapp error)
    +-- ConfigurationError       (startup / invalid config, no partial run)
    +-- SourceReadError          (one document could not be read or extracted)
    +-- DocumentKeyConflictError (key already indexed under another source)
    +-- EmbeddingServiceError    (embedding transport or provider failure)
    +-- StoreError               (vector index store failure)
    |   +-- StoreWriteError      (a document write failed; run continues)
    |   +-- StoreReadError       (listing or similarity search failed)
    +-- QueryValidationError     (empty query or non-positive result count)
    +-- SearchServiceError       (search failed for a reason other than input)

Per-document errors (``SourceReadError``, ``EmbeddingServiceError``,
``StoreWriteError``) are caught at the ingestion coordinator boundary and
aggregated into the run summary.  ``ConfigurationError`` aborts startup.
"""

from __future__ import annotations


class ChatAppError(Exception):
    """Base exception for all chatapp errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which collaborator triggered the error.
    ``__str__`` prefixes the provider name in brackets for log output,
    e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

class ConfigurationError(ChatAppError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Ingestion: per-document errors
# ---------------------------------------------------------------------------

class SourceReadError(ChatAppError):
    """Raised when a single document cannot be read or its text extracted.

    Carries the ``document_key`` so the coordinator can attribute the
    failure in the run summary.
    """

    def __init__(
        self,
        message: str = "Failed to read source document",
        provider_name: str | None = None,
        document_key: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._document_key = document_key

    @property
    def document_key(self) -> str | None:
        return self._document_key


class DocumentKeyConflictError(ChatAppError):
    """Raised when a scanned key is already indexed under another source.

    Keys are unique across the index, so the second source's document is
    reported failed and never written over the first one's.
    """

    def __init__(
        self,
        message: str = "Document key is owned by another source",
        provider_name: str | None = None,
        document_key: str | None = None,
        owner_source_id: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._document_key = document_key
        self._owner_source_id = owner_source_id

    @property
    def document_key(self) -> str | None:
        return self._document_key

    @property
    def owner_source_id(self) -> str | None:
        return self._owner_source_id


class EmbeddingServiceError(ChatAppError):
    """Raised when the embedding service fails or returns a malformed response.

    The ingestion coordinator retries the failing batch with backoff and
    marks the document failed once retries are exhausted.
    """

    def __init__(
        self,
        message: str = "Embedding service request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Vector index store
# ---------------------------------------------------------------------------

class StoreError(ChatAppError):
    """Base class for vector index store failures."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StoreWriteError(StoreError):
    """Raised when a document write (replace or delete) fails.

    Fatal for that document's ingestion; the run continues with others.
    """

    def __init__(
        self,
        message: str = "Vector store write failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StoreReadError(StoreError):
    """Raised when listing documents or running a similarity search fails."""

    def __init__(
        self,
        message: str = "Vector store read failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class QueryValidationError(ChatAppError):
    """Raised for an empty query or a non-positive result count."""

    def __init__(
        self,
        message: str = "Invalid search query",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class SearchServiceError(ChatAppError):
    """Raised when a search fails because of the store, not the input.

    An empty result list is reserved for "index empty or no matches"; a
    store fault is never masked as an empty result.
    """

    def __init__(
        self,
        message: str = "Semantic search failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)

"""Request and response schemas for the chatapp HTTP API.

Pydantic v2 models used by FastAPI for body validation and response
serialization.  Domain models (``chatapp.models``) are not exposed directly
so the wire format can evolve independently.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
    request_id: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    ingestion_running: bool = False


class SearchRequest(BaseModel):
    """Semantic search query.

    Blank queries and non-positive ``top_k`` are rejected by the search
    service with a 422 ``QueryValidationError`` body.
    """

    query: str = Field(..., max_length=2000)
    top_k: int | None = Field(default=None, description="Defaults to SEARCH_DEFAULT_TOP_K.")
    document_key: str | None = Field(
        default=None,
        description="Restrict results to a single document.",
    )


class SearchHit(BaseModel):
    """One search result with its citation."""

    document_key: str
    page_number: int
    ordinal: int
    score: float
    text: str
    citation: str


class SearchResponse(BaseModel):
    """Search results, best first, plus a chat-ready rendering."""

    query: str
    results: list[SearchHit] = Field(default_factory=list)
    formatted: str = ""


class IngestRequest(BaseModel):
    """Explicit ingestion trigger."""

    dry_run: bool = False


class DocumentOutcomeResponse(BaseModel):
    key: str
    state: str
    status: str
    chunks_written: int = 0
    chunks_deleted: int = 0
    error: str | None = None


class IngestResponse(BaseModel):
    """Summary of an ingestion run."""

    source_id: str
    run_id: str = ""
    dry_run: bool = False
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    removed: int = 0
    unchanged: int = 0
    chunks_written: int = 0
    chunks_deleted: int = 0
    writes: int = 0
    duration_s: float = 0.0
    outcomes: list[DocumentOutcomeResponse] = Field(default_factory=list)


class CorpusStatsResponse(BaseModel):
    """Vector index statistics."""

    total_documents: int = 0
    total_chunks: int = 0
    documents_by_source: dict[str, int] = Field(default_factory=dict)

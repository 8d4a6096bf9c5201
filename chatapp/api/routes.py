"""FastAPI API routes for chatapp.

Provides REST endpoints for health checks, semantic search, explicit
ingestion runs, and corpus statistics.  Service dependencies are resolved
from ``app.state`` via FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                  Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/health            GET     Health check + provider status
# /api/v1/search            POST    Semantic search with citations
# /api/v1/ingest            POST    Run (or dry-run) an ingestion pass
# /api/v1/corpus/stats      GET     Vector index statistics
#
# DEPENDENCY INJECTION PATTERN:
# Each route declares its dependencies as type-annotated params.  FastAPI
# resolves these via Depends() helpers that read from app.state, which the
# lifespan in main.py populates from the container.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from chatapp.api.schemas import (
    CorpusStatsResponse,
    DocumentOutcomeResponse,
    ErrorResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
)
from chatapp.interfaces.document_source import IDocumentSource
from chatapp.services.ingestion.ingestion_service import IngestionCoordinator
from chatapp.services.search_service import SemanticSearchService

logger = structlog.get_logger(logger_name=__name__)

_VERSION = "0.1.0"

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _get_container(request: Request):
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Application is still starting")
    return container


def _get_search_service(request: Request) -> SemanticSearchService:
    """Return the search service from application state."""
    return _get_container(request).search_service


def _get_coordinator(request: Request) -> IngestionCoordinator:
    """Return the ingestion coordinator from application state."""
    return _get_container(request).coordinator


def _get_source(request: Request) -> IDocumentSource:
    """Return the configured document source from application state."""
    return _get_container(request).source


SearchServiceDep = Annotated[SemanticSearchService, Depends(_get_search_service)]
CoordinatorDep = Annotated[IngestionCoordinator, Depends(_get_coordinator)]
SourceDep = Annotated[IDocumentSource, Depends(_get_source)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Report provider availability; ``degraded`` if any is unavailable."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        return HealthResponse(status="starting", version=_VERSION, providers={})

    providers = {
        "source": {
            "name": container.source.get_provider_name(),
            "available": container.source.is_available(),
        },
        "embedding": {
            "name": container.embedding_provider.get_provider_name(),
            "available": container.embedding_provider.is_available(),
            "dimension": container.embedding_provider.get_dimension(),
        },
        "vector_store": {
            "name": container.vector_store.get_provider_name(),
            "available": container.vector_store.is_available(),
        },
    }
    healthy = all(p["available"] for p in providers.values())
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=_VERSION,
        providers=providers,
        ingestion_running=container.coordinator.is_running,
    )


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Semantic search over the indexed documents",
)
async def search(body: SearchRequest, search_service: SearchServiceDep) -> SearchResponse:
    """Embed the query and return the nearest chunks with citations."""
    results = await search_service.search(
        body.query,
        top_k=body.top_k,
        document_key=body.document_key,
    )
    return SearchResponse(
        query=body.query,
        results=[
            SearchHit(
                document_key=r.document_key,
                page_number=r.page_number,
                ordinal=r.ordinal,
                score=r.score,
                text=r.text,
                citation=r.citation,
            )
            for r in results
        ],
        formatted=search_service.format_for_chat(results),
    )


@router.post(
    "/ingest",
    response_model=IngestResponse,
    responses={500: {"model": ErrorResponse}},
    summary="Synchronize the index with the document source",
)
async def ingest(
    coordinator: CoordinatorDep,
    source: SourceDep,
    body: IngestRequest | None = None,
) -> IngestResponse:
    """Run an ingestion pass now.  Waits for a run already in progress."""
    dry_run = body.dry_run if body else False
    summary = await coordinator.run(source, dry_run=dry_run)
    return IngestResponse(
        source_id=summary.source_id,
        run_id=summary.run_id,
        dry_run=summary.dry_run,
        succeeded=summary.succeeded,
        failed=summary.failed,
        skipped=summary.skipped,
        removed=summary.removed,
        unchanged=summary.unchanged,
        chunks_written=summary.chunks_written,
        chunks_deleted=summary.chunks_deleted,
        writes=summary.writes,
        duration_s=summary.duration_s,
        outcomes=[
            DocumentOutcomeResponse(
                key=o.key,
                state=o.state.value,
                status=o.status,
                chunks_written=o.chunks_written,
                chunks_deleted=o.chunks_deleted,
                error=o.error,
            )
            for o in summary.outcomes
        ],
    )


@router.get(
    "/corpus/stats",
    response_model=CorpusStatsResponse,
    responses={500: {"model": ErrorResponse}},
    summary="Get vector index statistics",
)
async def corpus_stats(coordinator: CoordinatorDep) -> CorpusStatsResponse:
    """Return document and chunk counts for the index."""
    stats = await coordinator.get_corpus_stats()
    return CorpusStatsResponse(
        total_documents=stats.total_documents,
        total_chunks=stats.total_chunks,
        documents_by_source=stats.documents_by_source,
    )

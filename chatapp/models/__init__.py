"""Pydantic data models for chatapp."""

from chatapp.models.ingestion import (
    DocumentOutcome,
    DocumentState,
    IngestionPlan,
    IngestionRunSummary,
)
from chatapp.models.rag import (
    CorpusStats,
    DocumentChunk,
    IngestedDocument,
    LoadedDocument,
    PageText,
    SearchResult,
    SourceEntry,
)

__all__ = [
    "CorpusStats",
    "DocumentChunk",
    "DocumentOutcome",
    "DocumentState",
    "IngestedDocument",
    "IngestionPlan",
    "IngestionRunSummary",
    "LoadedDocument",
    "PageText",
    "SearchResult",
    "SourceEntry",
]

"""RAG data models for the chatapp knowledge base.

Defines Pydantic v2 models for source entries, loaded documents, indexed
document records, chunks, search results, and corpus statistics.  All
models use frozen config so values passed between the ingestion stages
cannot be mutated behind the coordinator's back.

Pipeline overview:
    1. SCAN: the document source lists keys and content fingerprints
       (:class:`SourceEntry`) without extracting any text.
    2. LOAD: changed documents are read and their text extracted per page
       (:class:`LoadedDocument`).
    3. CHUNK: each page is split into token-bounded :class:`DocumentChunk`
       objects with stable ordinals.
    4. EMBED + STORE: chunks and their vectors replace the document's
       previous chunk set in the vector store, and the document record
       (:class:`IngestedDocument`) is updated with the new fingerprint.
    5. SEARCH: a query vector is matched against stored chunks and the
       nearest ones are returned as :class:`SearchResult` objects.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# SourceEntry — cheap scan output.
# ---------------------------------------------------------------------------
class SourceEntry(BaseModel):
    """A document as seen by the source's scan: key plus content fingerprint."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Stable source key, POSIX-style path relative to the root.")
    fingerprint: str = Field(description="SHA-256 hex digest of the document's raw bytes.")
    size: int = Field(default=0, ge=0, description="Size of the raw document in bytes.")
    read_error: str | None = Field(
        default=None,
        description=(
            "Why the document exists but could not be hashed; the fingerprint "
            "is empty when set."
        ),
    )


class PageText(BaseModel):
    """Extracted text of one page of a document."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1, description="1-based page number.")
    text: str = Field(default="", description="Extracted text; empty for image-only pages.")


class LoadedDocument(BaseModel):
    """A fully loaded document with per-page text, ready for chunking.

    ``fingerprint`` is computed from the bytes actually read during the
    load, so a file that changed between scan and load is recorded with
    the fingerprint of the content that was indexed.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Stable source key.")
    fingerprint: str = Field(description="SHA-256 hex digest of the loaded bytes.")
    pages: list[PageText] = Field(default_factory=list, description="Pages in order.")
    content_type: str = Field(
        default="text/plain",
        description='MIME-style content type, e.g. "application/pdf".',
    )


# ---------------------------------------------------------------------------
# IngestedDocument — one row of the documents table.
# ---------------------------------------------------------------------------
class IngestedDocument(BaseModel):
    """The index's record of a document whose chunks are stored.

    The fingerprint here always describes the content the stored chunks
    were produced from; it is written in the same unit of work as the
    chunks themselves.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Document key (primary key of the documents table).")
    source_id: str = Field(description="Namespace of the source that owns this key.")
    fingerprint: str = Field(description="Fingerprint of the indexed content.")
    ingested_at: datetime = Field(description="UTC timestamp of the last successful ingest.")
    chunk_count: int = Field(default=0, ge=0, description="Number of chunks stored for the key.")


# ---------------------------------------------------------------------------
# DocumentChunk — the unit of retrieval.
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """A chunk of text from a source document, ready for embedding and storage.

    ``ordinal`` is 0-based and consecutive across the whole document, so
    ``(doc_key, ordinal)`` is the chunk's identity in the store.  A chunk
    never spans pages; ``page_number`` is exact.
    """

    model_config = ConfigDict(frozen=True)

    doc_key: str = Field(description="Key of the parent document.")
    ordinal: int = Field(ge=0, description="0-based position within the document.")
    text: str = Field(description="The chunk's textual content.")
    page_number: int = Field(default=1, ge=1, description="Page the chunk was taken from.")
    token_count: int = Field(default=0, ge=0, description="Approximate token count.")

    @property
    def chunk_id(self) -> str:
        """Deterministic store id, e.g. ``"guides/setup.pdf#3"``."""
        return f"{self.doc_key}#{self.ordinal}"


# ---------------------------------------------------------------------------
# SearchResult — a chunk returned from a similarity query.
# ---------------------------------------------------------------------------
class SearchResult(BaseModel):
    """A stored chunk matched by a similarity search, with its score."""

    model_config = ConfigDict(frozen=True)

    document_key: str = Field(description="Key of the document the chunk belongs to.")
    text: str = Field(description="The chunk's textual content.")
    page_number: int = Field(default=1, ge=1, description="Page the chunk was taken from.")
    ordinal: int = Field(default=0, ge=0, description="Chunk ordinal within the document.")
    score: float = Field(
        default=0.0,
        description="Cosine similarity between the query and this chunk (higher is closer).",
    )

    @property
    def citation(self) -> str:
        return f"{self.document_key}, p.{self.page_number}"


# ---------------------------------------------------------------------------
# CorpusStats — a snapshot of the index's size.
# ---------------------------------------------------------------------------
class CorpusStats(BaseModel):
    """Aggregate statistics for the vector-store corpus.

    Returned by the /api/v1/corpus/stats endpoint and the ``stats`` CLI
    command.
    """

    model_config = ConfigDict(frozen=True)

    total_documents: int = Field(default=0, ge=0, description="Number of document records.")
    total_chunks: int = Field(default=0, ge=0, description="Number of stored chunks.")
    documents_by_source: dict[str, int] = Field(
        default_factory=dict,
        description='Document count per source namespace, e.g. {"documents": 12}.',
    )

"""Abstract base class for vector-store service providers.

Defines the contract for persisting document records and their embedded
chunks, and for similarity search over those chunks.  Two tables (or
collections) back every implementation:

* **documents** — one record per document key: owning source, fingerprint
  of the indexed content, ingest timestamp, chunk count.
* **chunks** — ``(doc_key, ordinal)`` identity, text, page number, token
  count, and the embedding vector.

The ingestion coordinator is the only writer.  Writes to one key are
serialized; different keys may be written concurrently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatapp.models.rag import CorpusStats, DocumentChunk, IngestedDocument, SearchResult


# Concrete implementations (chatapp/providers/vector_store/):
#   SQLiteVectorStore    — aiosqlite + numpy cosine, transactional replace
#   ChromaDBVectorStore  — two ChromaDB collections, delete-then-insert replace
class IVectorStoreProvider(ABC):
    """Contract for vector-store services used by ingestion and search.

    All query and mutation methods are async so a network-backed store can
    be dropped in without blocking the event loop.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables or collections if they do not exist yet."""

    @abstractmethod
    async def list_documents(self, source_id: str | None = None) -> dict[str, IngestedDocument]:
        """Return every document record, keyed by document key.

        Parameters
        ----------
        source_id:
            When given, only records owned by that source are returned.

        Raises
        ------
        chatapp.utils.errors.StoreReadError
            If the listing fails.
        """

    @abstractmethod
    async def get_document(self, key: str) -> IngestedDocument | None:
        """Return the record for *key*, or ``None`` if it is not indexed."""

    @abstractmethod
    async def replace_document(
        self,
        document: IngestedDocument,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Upsert *document* and fully replace its chunk set.

        All previously stored chunks for ``document.key`` are removed and
        *chunks* are inserted with *embeddings* (same length, same order).
        The stored chunk set afterwards is exactly *chunks*; old and new
        chunks are never both visible.  Each implementation documents
        whether a reader can observe an intermediate empty state.

        Returns
        -------
        int
            Number of chunks written.

        Raises
        ------
        chatapp.utils.errors.StoreWriteError
            If the write fails.  The previous version is left in place
            where the backend allows it.
        """

    @abstractmethod
    async def delete_document(self, key: str) -> int:
        """Delete the record for *key* and all of its chunks.

        Returns the number of chunks deleted.  Deleting a key that is not
        indexed is a no-op returning 0.
        """

    @abstractmethod
    async def delete_chunks_for_document(self, key: str) -> int:
        """Delete every chunk of *key*, leaving its record untouched."""

    @abstractmethod
    async def upsert_document(self, document: IngestedDocument) -> None:
        """Insert or update a document record without touching its chunks."""

    @abstractmethod
    async def delete_orphan_chunks(self) -> int:
        """Delete chunks whose ``doc_key`` has no document record.

        Returns the number of chunks deleted.
        """

    @abstractmethod
    async def get_chunks(self, key: str) -> list[DocumentChunk]:
        """Return the stored chunks of *key* ordered by ordinal."""

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        top_k: int,
        document_key: str | None = None,
    ) -> list[SearchResult]:
        """Return the *top_k* chunks nearest to *query_vector*.

        Results are ordered by cosine similarity, highest first, and at most
        *top_k* long.  An empty index yields an empty list.

        Parameters
        ----------
        query_vector:
            Embedding of the query text.
        top_k:
            Maximum number of results (positive).
        document_key:
            Restrict the search to the chunks of a single document.

        Raises
        ------
        chatapp.utils.errors.StoreReadError
            If the query fails.
        """

    @abstractmethod
    async def get_stats(self) -> CorpusStats:
        """Return aggregate counts for the stored corpus."""

    @abstractmethod
    async def get_embedding_dimension(self) -> int | None:
        """Return the dimension of stored vectors, or ``None`` if empty."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is initialized and usable."""

    async def close(self) -> None:
        """Release connections.  The default implementation does nothing."""
        return None

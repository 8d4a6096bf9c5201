"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Uses cosine distance for similarity search.  Fully local, free, and
Python-native — no external service required.

Two collections back the store:

* ``<prefix>-documents`` — one record per document key.  ChromaDB requires
  an embedding on every record, so document records carry a constant
  2-dimensional placeholder vector that is never queried.
* ``<prefix>-chunks`` — one record per chunk, id ``"<doc_key>#<ordinal>"``.

Atomicity: ChromaDB has no multi-operation transactions, so
``replace_document`` is delete-then-insert under the per-key write lock.
The document record is deleted first and written last.  A concurrent
reader may briefly see *zero* chunks for the key being replaced; it never
sees old and new chunks together, because every old chunk is gone before
the first new one is written.  A crash mid-replace leaves the key without a
document record, so the next ingestion run treats it as NEW and the orphan
sweep removes any partial chunk set.  A write that fails with an error
(rather than a crash) restores the snapshot of the old record and chunks
taken before the delete.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any

# Disable ChromaDB telemetry completely before importing chromadb.
# A version mismatch between ChromaDB's bundled PostHog client and the
# installed one causes "capture() takes 1 positional argument but 3 were
# given" errors.  Three layers:
#   1. ANONYMIZED_TELEMETRY env var — respected by some ChromaDB versions
#   2. posthog.disabled = True — disables the PostHog SDK directly
#   3. Settings(anonymized_telemetry=False) — passed to PersistentClient
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from chatapp.interfaces.vector_store_provider import IVectorStoreProvider
from chatapp.models.rag import CorpusStats, DocumentChunk, IngestedDocument, SearchResult
from chatapp.utils.concurrency import KeyedLock
from chatapp.utils.errors import (
    ConfigurationError,
    StoreError,
    StoreReadError,
    StoreWriteError,
)

logger = structlog.get_logger(logger_name=__name__)

# Page size for metadata scans; keeps each query under SQLite's
# bind-parameter ceiling inside ChromaDB.
_PAGE_SIZE = 5000

# Upsert batch size for chunk writes.
_WRITE_BATCH = 500

_DOCUMENT_PLACEHOLDER_VECTOR: list[float] = [1.0, 0.0]


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    chatapp always passes pre-computed embeddings, so ChromaDB's built-in
    embedding is never invoked.  Without this, ChromaDB downloads and loads
    its default all-MiniLM-L6-v2 ONNX model on collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "chatapp uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBVectorStore(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory ChromaDB persists to.
    collection_prefix:
        Prefix of the two collection names.
    expected_dimension:
        Dimension the configured embedding provider produces; checked
        against stored chunk vectors in :meth:`initialize`.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_prefix: str = "chatapp",
        expected_dimension: int | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_prefix = collection_prefix
        self._expected_dimension = expected_dimension
        self._key_locks = KeyedLock()
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._documents: Any = None
        self._chunks: Any = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open or create both collections and validate the vector dimension."""
        try:
            self._documents = self._get_or_create(f"{self._collection_prefix}-documents")
            self._chunks = self._get_or_create(f"{self._collection_prefix}-chunks")
        except Exception as exc:
            raise StoreWriteError(
                message=f"Failed to open ChromaDB collections: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "vector_store_initialized",
            backend="chromadb",
            path=self._persist_directory,
            prefix=self._collection_prefix,
        )
        await self._validate_embedding_dimensions()

    def _get_or_create(self, name: str) -> Any:
        # Newer ChromaDB versions refuse to reopen a collection with a
        # different embedding function than the one persisted; fall back to
        # the persisted one, which is harmless since embeddings are external.
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )

    async def _validate_embedding_dimensions(self) -> None:
        """Fail fast when stored chunk vectors do not match the provider."""
        if self._expected_dimension is None:
            return
        stored_dim = await self.get_embedding_dimension()
        if stored_dim is None:
            return
        if stored_dim != self._expected_dimension:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=self._expected_dimension,
            )
            raise ConfigurationError(
                message=(
                    f"Embedding dimension mismatch: index has {stored_dim}-dim vectors "
                    f"but the embedding provider produces {self._expected_dimension}-dim "
                    f"vectors."
                ),
                provider_name=self.get_provider_name(),
            )
        logger.info("embedding_dimension_validated", dimension=stored_dim)

    # ------------------------------------------------------------------
    # Document records
    # ------------------------------------------------------------------

    async def list_documents(self, source_id: str | None = None) -> dict[str, IngestedDocument]:
        try:
            where = {"source_id": source_id} if source_id is not None else None
            documents: dict[str, IngestedDocument] = {}
            for ids, metadatas in self._paginate(self._documents, where):
                for key, meta in zip(ids, metadatas, strict=True):
                    documents[key] = self._metadata_to_document(key, meta)
            return documents
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB list_documents failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def get_document(self, key: str) -> IngestedDocument | None:
        try:
            result = self._documents.get(ids=[key], include=["metadatas"])
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB get_document failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        if not result["ids"]:
            return None
        return self._metadata_to_document(key, result["metadatas"][0])

    async def upsert_document(self, document: IngestedDocument) -> None:
        async with self._key_locks.hold(document.key):
            try:
                self._write_document_record(document)
            except Exception as exc:
                raise StoreWriteError(
                    message=f"ChromaDB upsert_document failed for {document.key}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    # ------------------------------------------------------------------
    # Chunk writes
    # ------------------------------------------------------------------

    async def replace_document(
        self,
        document: IngestedDocument,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Delete-then-insert the chunk set of ``document.key``.

        Order: document record deleted, old chunks deleted, new chunks
        upserted in batches, document record written.  If any step fails
        the previous record and chunk set are written back, so a failed
        update leaves the last good version searchable.
        """
        if len(chunks) != len(embeddings):
            raise StoreWriteError(
                message=(
                    f"chunks and embeddings length mismatch for {document.key}: "
                    f"{len(chunks)} != {len(embeddings)}"
                ),
                provider_name=self.get_provider_name(),
            )

        async with self._key_locks.hold(document.key):
            try:
                previous = self._snapshot(document.key)
            except Exception as exc:
                raise StoreWriteError(
                    message=f"ChromaDB replace_document failed for {document.key}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

            try:
                self._documents.delete(ids=[document.key])
                self._delete_chunks(document.key)

                for start in range(0, len(chunks), _WRITE_BATCH):
                    batch = chunks[start : start + _WRITE_BATCH]
                    self._chunks.upsert(
                        ids=[c.chunk_id for c in batch],
                        embeddings=embeddings[start : start + _WRITE_BATCH],
                        documents=[c.text for c in batch],
                        metadatas=[self._chunk_to_metadata(c) for c in batch],
                    )

                self._write_document_record(document)
            except Exception as exc:
                self._restore(document.key, previous)
                raise StoreWriteError(
                    message=f"ChromaDB replace_document failed for {document.key}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

        logger.debug(
            "chromadb_replace_document",
            document_key=document.key,
            chunks=len(chunks),
        )
        return len(chunks)

    async def delete_document(self, key: str) -> int:
        async with self._key_locks.hold(key):
            try:
                self._documents.delete(ids=[key])
                return self._delete_chunks(key)
            except Exception as exc:
                raise StoreWriteError(
                    message=f"ChromaDB delete_document failed for {key}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    async def delete_chunks_for_document(self, key: str) -> int:
        async with self._key_locks.hold(key):
            try:
                return self._delete_chunks(key)
            except Exception as exc:
                raise StoreWriteError(
                    message=f"ChromaDB delete_chunks failed for {key}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    async def delete_orphan_chunks(self) -> int:
        try:
            known_keys: set[str] = set()
            for ids, _ in self._paginate(self._documents, None):
                known_keys.update(ids)

            orphan_ids: list[str] = []
            for ids, metadatas in self._paginate(self._chunks, None):
                for chunk_id, meta in zip(ids, metadatas, strict=True):
                    if meta.get("doc_key") not in known_keys:
                        orphan_ids.append(chunk_id)

            for start in range(0, len(orphan_ids), _WRITE_BATCH):
                self._chunks.delete(ids=orphan_ids[start : start + _WRITE_BATCH])
        except Exception as exc:
            raise StoreWriteError(
                message=f"ChromaDB orphan sweep failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if orphan_ids:
            logger.warning("orphan_chunks_deleted", backend="chromadb", count=len(orphan_ids))
        return len(orphan_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_chunks(self, key: str) -> list[DocumentChunk]:
        try:
            result = self._chunks.get(where={"doc_key": key}, include=["documents", "metadatas"])
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB get_chunks failed for {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        chunks = [
            self._metadata_to_chunk(meta, text)
            for text, meta in zip(result["documents"] or [], result["metadatas"] or [], strict=True)
        ]
        chunks.sort(key=lambda c: c.ordinal)
        return chunks

    async def search(
        self,
        query_vector: list[float],
        top_k: int,
        document_key: str | None = None,
    ) -> list[SearchResult]:
        if top_k <= 0:
            return []
        try:
            total = self._chunks.count()
            if total == 0:
                return []

            kwargs: dict[str, Any] = {
                "query_embeddings": [query_vector],
                "n_results": min(top_k, total),
                "include": ["documents", "metadatas", "distances"],
            }
            if document_key is not None:
                kwargs["where"] = {"doc_key": document_key}

            results = self._chunks.query(**kwargs)
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["documents"] or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = results["metadatas"][0]
        distances = results["distances"][0]

        hits = [
            SearchResult(
                document_key=meta["doc_key"],
                text=text,
                page_number=int(meta.get("page_number", 1)),
                ordinal=int(meta.get("ordinal", 0)),
                score=1.0 - float(distance),
            )
            for text, meta, distance in zip(documents, metadatas, distances, strict=True)
        ]
        hits.sort(key=lambda r: r.score, reverse=True)

        logger.debug(
            "chromadb_query",
            results_count=len(hits),
            top_score=hits[0].score if hits else 0.0,
            document_key=document_key,
        )
        return hits[:top_k]

    async def get_stats(self) -> CorpusStats:
        try:
            by_source: dict[str, int] = {}
            for _, metadatas in self._paginate(self._documents, None):
                for meta in metadatas:
                    sid = str(meta.get("source_id", ""))
                    by_source[sid] = by_source.get(sid, 0) + 1
            total_chunks = self._chunks.count()
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB get_stats failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return CorpusStats(
            total_documents=sum(by_source.values()),
            total_chunks=total_chunks,
            documents_by_source=by_source,
        )

    async def get_embedding_dimension(self) -> int | None:
        try:
            if self._chunks.count() == 0:
                return None
            sample = self._chunks.peek(limit=1)
        except Exception as exc:
            raise StoreReadError(
                message=f"ChromaDB peek failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if both collections are accessible."""
        if self._documents is None or self._chunks is None:
            return False
        try:
            self._chunks.count()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _snapshot(self, key: str) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return the current record and chunks of *key*, embeddings included."""
        record = self._documents.get(ids=[key], include=["metadatas"])
        chunks = self._chunks.get(
            where={"doc_key": key}, include=["embeddings", "documents", "metadatas"]
        )
        return record, chunks

    def _restore(self, key: str, previous: tuple[dict[str, Any], dict[str, Any]]) -> None:
        """Put back a snapshot taken by :meth:`_snapshot` after a failed replace.

        A failure here is logged; the key is then left without a record and
        the next run re-ingests it as NEW after the orphan sweep.
        """
        record, chunks = previous
        ids = list(chunks["ids"] or [])
        embeddings = chunks.get("embeddings")
        if embeddings is None:
            embeddings = []
        try:
            self._delete_chunks(key)
            for start in range(0, len(ids), _WRITE_BATCH):
                end = start + _WRITE_BATCH
                self._chunks.upsert(
                    ids=ids[start:end],
                    embeddings=[[float(v) for v in e] for e in embeddings[start:end]],
                    documents=list(chunks["documents"][start:end]),
                    metadatas=list(chunks["metadatas"][start:end]),
                )
            if record["ids"]:
                self._documents.upsert(
                    ids=[key],
                    embeddings=[_DOCUMENT_PLACEHOLDER_VECTOR],
                    documents=[key],
                    metadatas=[record["metadatas"][0]],
                )
        except Exception as exc:
            logger.error("chromadb_restore_failed", document_key=key, error=str(exc))
            return
        logger.warning("chromadb_replace_rolled_back", document_key=key, chunks=len(ids))

    def _delete_chunks(self, key: str) -> int:
        existing = self._chunks.get(where={"doc_key": key}, include=["metadatas"])
        ids = existing["ids"] or []
        for start in range(0, len(ids), _WRITE_BATCH):
            self._chunks.delete(ids=ids[start : start + _WRITE_BATCH])
        return len(ids)

    def _write_document_record(self, document: IngestedDocument) -> None:
        self._documents.upsert(
            ids=[document.key],
            embeddings=[_DOCUMENT_PLACEHOLDER_VECTOR],
            documents=[document.key],
            metadatas=[self._document_to_metadata(document)],
        )

    @staticmethod
    def _paginate(collection: Any, where: dict[str, Any] | None):
        """Yield ``(ids, metadatas)`` pages of *collection*."""
        kwargs: dict[str, Any] = {"include": ["metadatas"]}
        if where:
            kwargs["where"] = where
        offset = 0
        while True:
            page = collection.get(**kwargs, limit=_PAGE_SIZE, offset=offset)
            ids = page["ids"] or []
            if not ids:
                break
            yield ids, page["metadatas"] or [{}] * len(ids)
            if len(ids) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE

    @staticmethod
    def _document_to_metadata(document: IngestedDocument) -> dict[str, str | int]:
        return {
            "source_id": document.source_id,
            "fingerprint": document.fingerprint,
            "ingested_at": document.ingested_at.isoformat(),
            "chunk_count": document.chunk_count,
        }

    @staticmethod
    def _metadata_to_document(key: str, meta: dict[str, Any]) -> IngestedDocument:
        try:
            return IngestedDocument(
                key=key,
                source_id=str(meta["source_id"]),
                fingerprint=str(meta["fingerprint"]),
                ingested_at=datetime.fromisoformat(str(meta["ingested_at"])),
                chunk_count=int(meta.get("chunk_count", 0)),
            )
        except (KeyError, ValueError) as exc:
            raise StoreError(
                message=f"Malformed document record for {key}: {exc}",
                provider_name="chromadb",
            ) from exc

    @staticmethod
    def _chunk_to_metadata(chunk: DocumentChunk) -> dict[str, str | int]:
        """Convert a DocumentChunk to a ChromaDB-compatible metadata dict."""
        return {
            "doc_key": chunk.doc_key,
            "ordinal": chunk.ordinal,
            "page_number": chunk.page_number,
            "token_count": chunk.token_count,
        }

    @staticmethod
    def _metadata_to_chunk(meta: dict[str, Any], text: str) -> DocumentChunk:
        return DocumentChunk(
            doc_key=str(meta["doc_key"]),
            ordinal=int(meta["ordinal"]),
            text=text,
            page_number=int(meta.get("page_number", 1)),
            token_count=int(meta.get("token_count", 0)),
        )

"""SQLite vector store provider.

Persists document records and embedded chunks in a local SQLite database
using ``aiosqlite`` for async I/O.  Similarity search loads the candidate
vectors and scores them with numpy (cosine similarity); for the corpus
sizes a single chat app indexes this is fast and needs no extra service.

Atomicity: ``replace_document`` deletes the old chunks, inserts the new
ones and upserts the document record inside one ``BEGIN IMMEDIATE``
transaction.  The database runs in WAL mode and every operation opens its
own connection, so a concurrent reader sees either the complete old chunk
set or the complete new one, never a mix and never an empty gap.  A failed
write rolls back and leaves the previous version intact.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import numpy as np
import structlog

from chatapp.interfaces.vector_store_provider import IVectorStoreProvider
from chatapp.models.rag import CorpusStats, DocumentChunk, IngestedDocument, SearchResult
from chatapp.utils.concurrency import KeyedLock
from chatapp.utils.errors import ConfigurationError, StoreReadError, StoreWriteError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/vector-store.db")

# Seconds a connection waits on a locked database before failing.
_BUSY_TIMEOUT_S = 30.0

_VECTOR_DTYPE = np.float32

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    key          TEXT    PRIMARY KEY,
    source_id    TEXT    NOT NULL,
    fingerprint  TEXT    NOT NULL,
    ingested_at  TEXT    NOT NULL,
    chunk_count  INTEGER NOT NULL DEFAULT 0
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    doc_key      TEXT    NOT NULL,
    ordinal      INTEGER NOT NULL,
    text         TEXT    NOT NULL,
    page_number  INTEGER NOT NULL,
    token_count  INTEGER NOT NULL,
    vector       BLOB    NOT NULL,
    PRIMARY KEY (doc_key, ordinal)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(source_id);",
]

_UPSERT_DOCUMENT_SQL = """\
INSERT INTO documents (key, source_id, fingerprint, ingested_at, chunk_count)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(key)
DO UPDATE SET source_id   = excluded.source_id,
              fingerprint = excluded.fingerprint,
              ingested_at = excluded.ingested_at,
              chunk_count = excluded.chunk_count;
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO chunks (doc_key, ordinal, text, page_number, token_count, vector)
VALUES (?, ?, ?, ?, ?, ?);
"""

_SELECT_DOCUMENT_COLUMNS = "key, source_id, fingerprint, ingested_at, chunk_count"

_DELETE_ORPHANS_SQL = """\
DELETE FROM chunks
WHERE doc_key NOT IN (SELECT key FROM documents);
"""


class SQLiteVectorStore(IVectorStoreProvider):
    """SQLite-backed document and chunk persistence with numpy cosine search.

    Parameters
    ----------
    db_path:
        Location of the database file; parent directories are created.
    expected_dimension:
        Dimension the configured embedding provider produces.  When set,
        :meth:`initialize` fails with :class:`ConfigurationError` if stored
        vectors have a different dimension.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        expected_dimension: int | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._expected_dimension = expected_dimension
        self._key_locks = KeyedLock()
        self._initialized = False

    def _connect(self) -> aiosqlite.Connection:
        # isolation_level=None: transactions are opened explicitly with
        # BEGIN IMMEDIATE instead of sqlite3's implicit deferred BEGIN.
        return aiosqlite.connect(
            str(self._db_path),
            timeout=_BUSY_TIMEOUT_S,
            isolation_level=None,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create tables and indices, enable WAL, validate vector dimension."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL;")
                for table_sql in _CREATE_TABLES_SQL:
                    await db.execute(table_sql)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
        except aiosqlite.Error as exc:
            raise StoreWriteError(
                message=f"Failed to initialize SQLite store at {self._db_path}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        self._initialized = True
        logger.info("vector_store_initialized", backend="sqlite", path=str(self._db_path))
        await self._validate_embedding_dimensions()

    async def _validate_embedding_dimensions(self) -> None:
        """Verify stored vectors match the embedding provider's dimension.

        A mismatch means every query would produce garbage results, so
        startup fails loud and fast.
        """
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
                    f"vectors. Re-create {self._db_path} or configure the original model."
                ),
                provider_name=self.get_provider_name(),
            )
        logger.info("embedding_dimension_validated", dimension=stored_dim)

    async def close(self) -> None:
        self._initialized = False

    # ------------------------------------------------------------------
    # Document records
    # ------------------------------------------------------------------

    async def list_documents(self, source_id: str | None = None) -> dict[str, IngestedDocument]:
        sql = f"SELECT {_SELECT_DOCUMENT_COLUMNS} FROM documents"
        params: tuple = ()
        if source_id is not None:
            sql += " WHERE source_id = ?"
            params = (source_id,)
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Listing documents failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return {row[0]: self._row_to_document(row) for row in rows}

    async def get_document(self, key: str) -> IngestedDocument | None:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    f"SELECT {_SELECT_DOCUMENT_COLUMNS} FROM documents WHERE key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Reading document {key} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return self._row_to_document(row) if row else None

    async def upsert_document(self, document: IngestedDocument) -> None:
        async with self._key_locks.hold(document.key):
            await self._write(
                document.key,
                [(_UPSERT_DOCUMENT_SQL, self._document_params(document))],
            )

    # ------------------------------------------------------------------
    # Chunk writes
    # ------------------------------------------------------------------

    async def replace_document(
        self,
        document: IngestedDocument,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Replace the chunk set of ``document.key`` in a single transaction."""
        if len(chunks) != len(embeddings):
            raise StoreWriteError(
                message=(
                    f"chunks and embeddings length mismatch for {document.key}: "
                    f"{len(chunks)} != {len(embeddings)}"
                ),
                provider_name=self.get_provider_name(),
            )

        chunk_rows = [
            (
                document.key,
                chunk.ordinal,
                chunk.text,
                chunk.page_number,
                chunk.token_count,
                np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes(),
            )
            for chunk, vector in zip(chunks, embeddings, strict=True)
        ]

        async with self._key_locks.hold(document.key):
            async with self._transaction(document.key) as db:
                await db.execute("DELETE FROM chunks WHERE doc_key = ?", (document.key,))
                if chunk_rows:
                    await db.executemany(_INSERT_CHUNK_SQL, chunk_rows)
                await db.execute(_UPSERT_DOCUMENT_SQL, self._document_params(document))

        logger.debug(
            "sqlite_replace_document",
            document_key=document.key,
            chunks=len(chunk_rows),
        )
        return len(chunk_rows)

    async def delete_document(self, key: str) -> int:
        async with self._key_locks.hold(key):
            async with self._transaction(key) as db:
                cursor = await db.execute("DELETE FROM chunks WHERE doc_key = ?", (key,))
                deleted = cursor.rowcount
                await db.execute("DELETE FROM documents WHERE key = ?", (key,))
        return max(deleted, 0)

    async def delete_chunks_for_document(self, key: str) -> int:
        async with self._key_locks.hold(key):
            async with self._transaction(key) as db:
                cursor = await db.execute("DELETE FROM chunks WHERE doc_key = ?", (key,))
                deleted = cursor.rowcount
        return max(deleted, 0)

    async def delete_orphan_chunks(self) -> int:
        async with self._transaction("*") as db:
            cursor = await db.execute(_DELETE_ORPHANS_SQL)
            deleted = max(cursor.rowcount, 0)
        if deleted:
            logger.warning("orphan_chunks_deleted", backend="sqlite", count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_chunks(self, key: str) -> list[DocumentChunk]:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT doc_key, ordinal, text, page_number, token_count "
                    "FROM chunks WHERE doc_key = ? ORDER BY ordinal",
                    (key,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Reading chunks of {key} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return [
            DocumentChunk(
                doc_key=row[0],
                ordinal=row[1],
                text=row[2],
                page_number=row[3],
                token_count=row[4],
            )
            for row in rows
        ]

    async def search(
        self,
        query_vector: list[float],
        top_k: int,
        document_key: str | None = None,
    ) -> list[SearchResult]:
        """Score every candidate chunk by cosine similarity and keep the best.

        Ties keep ``(doc_key, ordinal)`` order, so results are deterministic.
        """
        if top_k <= 0:
            return []

        sql = "SELECT doc_key, ordinal, text, page_number, vector FROM chunks"
        params: tuple = ()
        if document_key is not None:
            sql += " WHERE doc_key = ?"
            params = (document_key,)
        sql += " ORDER BY doc_key, ordinal"

        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Similarity search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not rows:
            return []

        query = np.asarray(query_vector, dtype=_VECTOR_DTYPE)
        try:
            matrix = np.frombuffer(b"".join(row[4] for row in rows), dtype=_VECTOR_DTYPE)
            matrix = matrix.reshape(len(rows), -1)
        except ValueError as exc:
            raise StoreReadError(
                message=f"Stored vectors have inconsistent dimensions: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        if matrix.shape[1] != query.shape[0]:
            raise StoreReadError(
                message=(
                    f"Query vector has dimension {query.shape[0]}, "
                    f"index has {matrix.shape[1]}"
                ),
                provider_name=self.get_provider_name(),
            )

        scores = _cosine_scores(matrix, query)
        order = np.argsort(-scores, kind="stable")[:top_k]

        return [
            SearchResult(
                document_key=rows[i][0],
                ordinal=rows[i][1],
                text=rows[i][2],
                page_number=rows[i][3],
                score=float(scores[i]),
            )
            for i in order
        ]

    async def get_stats(self) -> CorpusStats:
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM chunks")
                (total_chunks,) = await cursor.fetchone()
                cursor = await db.execute(
                    "SELECT source_id, COUNT(*) FROM documents GROUP BY source_id"
                )
                by_source = {row[0]: row[1] for row in await cursor.fetchall()}
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Reading corpus stats failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return CorpusStats(
            total_documents=sum(by_source.values()),
            total_chunks=total_chunks,
            documents_by_source=by_source,
        )

    async def get_embedding_dimension(self) -> int | None:
        try:
            async with self._connect() as db:
                cursor = await db.execute("SELECT length(vector) FROM chunks LIMIT 1")
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreReadError(
                message=f"Reading vector dimension failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        if row is None:
            return None
        return row[0] // np.dtype(_VECTOR_DTYPE).itemsize

    def get_provider_name(self) -> str:
        return "sqlite"

    def is_available(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transaction(self, key: str) -> _Transaction:
        return _Transaction(self, key)

    async def _write(self, key: str, statements: list[tuple[str, tuple]]) -> None:
        async with self._transaction(key) as db:
            for sql, params in statements:
                await db.execute(sql, params)

    @staticmethod
    def _document_params(document: IngestedDocument) -> tuple:
        return (
            document.key,
            document.source_id,
            document.fingerprint,
            document.ingested_at.isoformat(),
            document.chunk_count,
        )

    @staticmethod
    def _row_to_document(row: tuple) -> IngestedDocument:
        return IngestedDocument(
            key=row[0],
            source_id=row[1],
            fingerprint=row[2],
            ingested_at=datetime.fromisoformat(row[3]),
            chunk_count=row[4],
        )


class _Transaction:
    """``async with`` wrapper: connect, ``BEGIN IMMEDIATE``, commit or roll back.

    Any SQLite error inside the block rolls back and is re-raised as
    :class:`StoreWriteError` naming the document key.
    """

    def __init__(self, store: SQLiteVectorStore, key: str) -> None:
        self._store = store
        self._key = key
        self._db: aiosqlite.Connection | None = None

    async def __aenter__(self) -> aiosqlite.Connection:
        try:
            self._db = await self._store._connect()
            await self._db.execute("BEGIN IMMEDIATE")
        except aiosqlite.Error as exc:
            await self._close()
            raise StoreWriteError(
                message=f"Cannot start write transaction for {self._key}: {exc}",
                provider_name=self._store.get_provider_name(),
            ) from exc
        return self._db

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._db is None:
            raise StoreWriteError(
                message=f"No open write transaction for {self._key}",
                provider_name=self._store.get_provider_name(),
            )
        try:
            if exc_type is None:
                try:
                    await self._db.execute("COMMIT")
                    return False
                except aiosqlite.Error as commit_exc:
                    await self._rollback()
                    raise StoreWriteError(
                        message=f"Commit failed for {self._key}: {commit_exc}",
                        provider_name=self._store.get_provider_name(),
                    ) from commit_exc

            await self._rollback()
            if isinstance(exc, aiosqlite.Error):
                raise StoreWriteError(
                    message=f"Write failed for {self._key}: {exc}",
                    provider_name=self._store.get_provider_name(),
                ) from exc
            return False
        finally:
            await self._close()

    async def _rollback(self) -> None:
        if self._db is not None and self._db.in_transaction:
            await self._db.execute("ROLLBACK")

    async def _close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


def _cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row of *matrix* with *query*; zero vectors score 0."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores.astype(np.float64)

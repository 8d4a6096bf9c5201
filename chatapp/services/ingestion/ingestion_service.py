"""Incremental ingestion coordinator.

Keeps the vector index synchronized with a document source.  Every run
classifies each key into one of four states by comparing the source scan
with the index's document records:

    ========== =================== ===================================
    State      Where the key is     Action
    ========== =================== ===================================
    UNCHANGED  source and index,    none
               same fingerprint
    NEW        source only          load -> chunk -> embed -> insert
    MODIFIED   both, fingerprint    load -> chunk -> embed -> replace
               differs
    REMOVED    index only           delete record and chunks
    ========== =================== ===================================

The :class:`IngestionCoordinator` follows the **Orchestrator pattern**: it
coordinates the source, chunker, embedding provider and vector store
without any of them knowing about each other.  All collaborators are
injected via the constructor.

Failure isolation: a document that cannot be read, embedded or written is
logged, counted as failed in the run summary and left exactly as it was in
the index (old version for MODIFIED, absent for NEW).  Its fingerprint
still differs next run, so it is retried then.  No single document aborts
the run.

Keys are unique across the index.  A scanned key already indexed under
another source is a conflict and is never written.  A key the scan found
but could not read keeps its indexed version instead of being REMOVED.
Both are reported failed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from chatapp.models.ingestion import (
    DocumentOutcome,
    DocumentState,
    IngestionPlan,
    IngestionRunSummary,
)
from chatapp.models.rag import CorpusStats, DocumentChunk, IngestedDocument, SourceEntry
from chatapp.services.ingestion.chunker import TextChunker
from chatapp.utils.concurrency import retry_async, throttled_gather
from chatapp.utils.logging import run_context
from chatapp.utils.errors import (
    DocumentKeyConflictError,
    EmbeddingServiceError,
    SourceReadError,
    StoreWriteError,
)

if TYPE_CHECKING:
    from chatapp.interfaces.document_source import IDocumentSource
    from chatapp.interfaces.embedding_provider import IEmbeddingProvider
    from chatapp.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)

# Errors that fail a single document without aborting the run.
_DOCUMENT_ERRORS = (SourceReadError, EmbeddingServiceError, StoreWriteError)


@dataclass
class _Attempts:
    """Embedding attempts made for one document, retries included."""

    count: int = 0


class IngestionCoordinator:
    """Diffs a document source against the index and applies the changes.

    Parameters
    ----------
    chunker:
        Splits loaded documents into token-bounded chunks.
    embedding_provider:
        Generates embedding vectors for chunk text.
    vector_store:
        Persists document records and chunks.  The coordinator is its only
        writer.
    concurrency:
        Maximum number of documents processed at once (bounded worker pool).
    embedding_batch_size:
        Number of chunk texts per embedding request.
    embedding_max_retries:
        Extra attempts per failing embedding batch.
    embedding_retry_backoff_s:
        Base delay; retry *n* waits ``backoff * 2 ** (n - 1)`` seconds.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        concurrency: int = 4,
        embedding_batch_size: int = 32,
        embedding_max_retries: int = 3,
        embedding_retry_backoff_s: float = 1.0,
    ) -> None:
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._concurrency = max(1, concurrency)
        self._embedding_batch_size = max(1, embedding_batch_size)
        self._embedding_max_retries = embedding_max_retries
        self._embedding_retry_backoff_s = embedding_retry_backoff_s
        # One run at a time; a second trigger waits for the first.
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def plan(self, source: IDocumentSource) -> IngestionPlan:
        """Compute the diff between *source* and the index.

        One scan, one listing, set differences computed once.  Only
        documents owned by ``source.source_id`` are diffed, so a source
        never removes another source's documents.

        Two kinds of scanned key are blocked instead of diffed, and come
        back as failed outcomes in ``plan.blocked``:

        * a key already indexed under another source.  It is never
          written, so the owner's document survives.
        * a key the scan found but could not read.  An indexed version
          is kept rather than treated as REMOVED.
        """
        entries = await source.scan()
        all_indexed = await self._vector_store.list_documents()
        indexed = {k: d for k, d in all_indexed.items() if d.source_id == source.source_id}

        scanned: dict[str, SourceEntry] = {}
        blocked: list[DocumentOutcome] = []
        for entry in entries:
            owner = all_indexed.get(entry.key)
            if owner is not None and owner.source_id != source.source_id:
                blocked.append(self._conflict_outcome(source, entry.key, owner.source_id))
            elif entry.read_error is not None:
                blocked.append(self._unreadable_outcome(source, entry, entry.key in indexed))
            else:
                scanned[entry.key] = entry

        blocked_keys = {o.key for o in blocked}
        source_keys = set(scanned)
        index_keys = set(indexed) - blocked_keys
        in_both = source_keys & index_keys

        modified = sorted(k for k in in_both if scanned[k].fingerprint != indexed[k].fingerprint)
        unchanged = sorted(in_both.difference(modified))
        new = sorted(source_keys - index_keys)
        removed = sorted(index_keys - source_keys)

        return IngestionPlan(
            source_id=source.source_id,
            new=new,
            modified=modified,
            removed=removed,
            unchanged=unchanged,
            blocked=sorted(blocked, key=lambda o: o.key),
            entries={k: scanned[k] for k in new + modified},
            indexed_chunk_counts={k: indexed[k].chunk_count for k in modified + removed},
        )

    async def run(self, source: IDocumentSource, dry_run: bool = False) -> IngestionRunSummary:
        """Synchronize the index with *source*.

        Steps: orphan sweep, plan, delete REMOVED documents, then process
        NEW and MODIFIED documents on the bounded worker pool.  Every
        event logged during the run carries ``source_id`` and ``run_id``.

        Parameters
        ----------
        source:
            The document source to ingest.
        dry_run:
            When ``True``, compute the plan and return it as a summary
            (every change has status ``"planned"``) without writing.

        Returns
        -------
        IngestionRunSummary
            Counts per outcome plus one :class:`DocumentOutcome` per
            NEW, MODIFIED, REMOVED or blocked key.

        Raises
        ------
        chatapp.utils.errors.StoreError
            If the orphan sweep or the index listing fails; no document
            has been touched in that case.
        """
        async with self._run_lock:
            with run_context(source.source_id) as run_id:
                return await self._run_locked(source, dry_run, run_id)

    async def _run_locked(
        self, source: IDocumentSource, dry_run: bool, run_id: str
    ) -> IngestionRunSummary:
        start = time.monotonic()

        orphans_deleted = 0
        if not dry_run:
            orphans_deleted = await self._vector_store.delete_orphan_chunks()

        plan = await self.plan(source)
        logger.info(
            "ingestion_plan",
            new=len(plan.new),
            modified=len(plan.modified),
            removed=len(plan.removed),
            unchanged=len(plan.unchanged),
            blocked=len(plan.blocked),
            dry_run=dry_run,
        )

        if dry_run:
            return self._planned_summary(plan, run_id, time.monotonic() - start)

        outcomes: list[DocumentOutcome] = list(plan.blocked)
        for key in plan.removed:
            outcomes.append(await self._remove_document(key, plan))

        to_ingest = plan.to_ingest
        results = await throttled_gather(
            [
                self._ingest_document(source, plan.entries[key], plan.state_of(key))
                for key in to_ingest
            ],
            limit=self._concurrency,
        )
        for key, result in zip(to_ingest, results, strict=True):
            if isinstance(result, DocumentOutcome):
                outcomes.append(result)
            elif isinstance(result, Exception):
                # Anything outside the expected per-document errors is
                # still isolated to its document.
                logger.error(
                    "document_failed_unexpected",
                    document_key=key,
                    error=f"{type(result).__name__}: {result}",
                    exc_info=result,
                )
                outcomes.append(
                    DocumentOutcome(
                        key=key,
                        state=plan.state_of(key) or DocumentState.NEW,
                        status="failed",
                        error=f"{type(result).__name__}: {result}",
                    )
                )
            else:
                raise result

        summary = self._summarize(
            plan, outcomes, orphans_deleted, run_id, time.monotonic() - start
        )
        logger.info(
            "ingestion_run_complete",
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
            removed=summary.removed,
            unchanged=summary.unchanged,
            chunks_written=summary.chunks_written,
            chunks_deleted=summary.chunks_deleted,
            writes=summary.writes,
            time_s=summary.duration_s,
        )
        if summary.failed:
            logger.warning("ingestion_run_had_failures", failed_keys=summary.failed_keys)
        return summary

    async def get_corpus_stats(self) -> CorpusStats:
        """Return aggregate statistics about the vector-store corpus."""
        return await self._vector_store.get_stats()

    # ------------------------------------------------------------------
    # Per-document work
    # ------------------------------------------------------------------

    async def _ingest_document(
        self,
        source: IDocumentSource,
        entry: SourceEntry,
        state: DocumentState | None,
    ) -> DocumentOutcome:
        """load -> chunk -> embed -> replace for one NEW or MODIFIED key."""
        state = state or DocumentState.NEW
        attempts = _Attempts()
        started = time.monotonic()
        try:
            document = await source.load(entry)
            chunks = self._chunker.chunk_document(document)
            embeddings = await self._embed_chunks(entry.key, chunks, attempts)
            record = IngestedDocument(
                key=entry.key,
                source_id=source.source_id,
                fingerprint=document.fingerprint,
                ingested_at=datetime.now(timezone.utc),
                chunk_count=len(chunks),
            )
            written = await self._vector_store.replace_document(record, chunks, embeddings)
        except _DOCUMENT_ERRORS as exc:
            logger.warning(
                "document_failed",
                document_key=entry.key,
                state=state.value,
                error_type=type(exc).__name__,
                error=str(exc),
                attempts=attempts.count,
            )
            return DocumentOutcome(
                key=entry.key,
                state=state,
                status="failed",
                error=f"{type(exc).__name__}: {exc}",
                attempts=attempts.count,
            )

        if not chunks:
            logger.info("document_has_no_text", document_key=entry.key, state=state.value)

        logger.info(
            "document_ingested",
            document_key=entry.key,
            state=state.value,
            chunks=written,
            tokens=sum(c.token_count for c in chunks),
            time_s=round(time.monotonic() - started, 2),
        )
        return DocumentOutcome(
            key=entry.key,
            state=state,
            status="succeeded" if chunks else "skipped",
            chunks_written=written,
            attempts=attempts.count,
        )

    async def _embed_chunks(
        self,
        key: str,
        chunks: list[DocumentChunk],
        attempts: _Attempts,
    ) -> list[list[float]]:
        """Embed chunk texts in batches, retrying each batch with backoff."""
        vectors: list[list[float]] = []
        batch = self._embedding_batch_size

        for start in range(0, len(chunks), batch):
            texts = [c.text for c in chunks[start : start + batch]]

            async def _call(texts: list[str] = texts) -> list[list[float]]:
                attempts.count += 1
                return await self._embedding_provider.embed(texts)

            batch_vectors = await retry_async(
                _call,
                retry_on=EmbeddingServiceError,
                max_retries=self._embedding_max_retries,
                backoff_s=self._embedding_retry_backoff_s,
                logger=logger,
                event="embedding_batch_retry",
                document_key=key,
                batch_start=start,
            )
            if len(batch_vectors) != len(texts):
                raise EmbeddingServiceError(
                    message=(
                        f"Embedding gateway returned {len(batch_vectors)} vectors "
                        f"for {len(texts)} chunks of {key}"
                    ),
                    provider_name=self._embedding_provider.get_provider_name(),
                )
            vectors.extend(batch_vectors)

        return vectors

    async def _remove_document(self, key: str, plan: IngestionPlan) -> DocumentOutcome:
        try:
            deleted = await self._vector_store.delete_document(key)
        except StoreWriteError as exc:
            logger.warning("document_remove_failed", document_key=key, error=str(exc))
            return DocumentOutcome(
                key=key,
                state=DocumentState.REMOVED,
                status="failed",
                error=f"{type(exc).__name__}: {exc}",
            )
        logger.info("document_removed", document_key=key, chunks_deleted=deleted)
        return DocumentOutcome(
            key=key,
            state=DocumentState.REMOVED,
            status="succeeded",
            chunks_deleted=deleted,
        )

    # ------------------------------------------------------------------
    # Blocked keys
    # ------------------------------------------------------------------

    @staticmethod
    def _conflict_outcome(source: IDocumentSource, key: str, owner: str) -> DocumentOutcome:
        exc = DocumentKeyConflictError(
            message=f"{key} is already indexed under source '{owner}'",
            provider_name=source.get_provider_name(),
            document_key=key,
            owner_source_id=owner,
        )
        logger.warning("document_key_conflict", document_key=key, owner_source_id=owner)
        return DocumentOutcome(
            key=key,
            state=DocumentState.NEW,
            status="failed",
            error=f"{type(exc).__name__}: {exc}",
        )

    @staticmethod
    def _unreadable_outcome(
        source: IDocumentSource, entry: SourceEntry, indexed: bool
    ) -> DocumentOutcome:
        exc = SourceReadError(
            message=f"Cannot read {entry.key}: {entry.read_error}",
            provider_name=source.get_provider_name(),
            document_key=entry.key,
        )
        logger.warning(
            "document_unreadable_at_scan",
            document_key=entry.key,
            kept_indexed_version=indexed,
            error=entry.read_error,
        )
        return DocumentOutcome(
            key=entry.key,
            state=DocumentState.MODIFIED if indexed else DocumentState.NEW,
            status="failed",
            error=f"{type(exc).__name__}: {exc}",
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    @staticmethod
    def _summarize(
        plan: IngestionPlan,
        outcomes: list[DocumentOutcome],
        orphans_deleted: int,
        run_id: str,
        elapsed: float,
    ) -> IngestionRunSummary:
        ingested = [o for o in outcomes if o.state != DocumentState.REMOVED]
        removed = [o for o in outcomes if o.state == DocumentState.REMOVED]
        committed = [o for o in outcomes if o.status != "failed"]

        # A committed MODIFIED replace dropped the previous chunk set.
        replaced_chunks = sum(
            plan.indexed_chunk_counts.get(o.key, 0)
            for o in ingested
            if o.status != "failed" and o.state == DocumentState.MODIFIED
        )

        return IngestionRunSummary(
            source_id=plan.source_id,
            run_id=run_id,
            succeeded=sum(1 for o in ingested if o.status == "succeeded"),
            failed=sum(1 for o in outcomes if o.status == "failed"),
            skipped=sum(1 for o in ingested if o.status == "skipped"),
            removed=sum(1 for o in removed if o.status == "succeeded"),
            unchanged=len(plan.unchanged),
            chunks_written=sum(o.chunks_written for o in ingested),
            chunks_deleted=(
                sum(o.chunks_deleted for o in removed) + replaced_chunks + orphans_deleted
            ),
            writes=len(committed) + (1 if orphans_deleted else 0),
            duration_s=round(elapsed, 3),
            outcomes=outcomes,
        )

    @staticmethod
    def _planned_summary(plan: IngestionPlan, run_id: str, elapsed: float) -> IngestionRunSummary:
        """Dry-run summary.  Blocked keys are reported failed, as a real run would."""
        outcomes = (
            list(plan.blocked)
            + [
                DocumentOutcome(key=k, state=DocumentState.REMOVED, status="planned")
                for k in plan.removed
            ]
            + [
                DocumentOutcome(
                    key=k, state=plan.state_of(k) or DocumentState.NEW, status="planned"
                )
                for k in plan.to_ingest
            ]
        )
        return IngestionRunSummary(
            source_id=plan.source_id,
            run_id=run_id,
            failed=len(plan.blocked),
            unchanged=len(plan.unchanged),
            duration_s=round(elapsed, 3),
            dry_run=True,
            outcomes=outcomes,
        )

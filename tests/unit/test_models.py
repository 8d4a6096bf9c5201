"""Unit tests for the Pydantic domain models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from chatapp.models.ingestion import (
    DocumentOutcome,
    DocumentState,
    IngestionPlan,
    IngestionRunSummary,
)
from chatapp.models.rag import (
    DocumentChunk,
    IngestedDocument,
    PageText,
    SearchResult,
    SourceEntry,
)
from chatapp.utils.errors import ChatAppError, StoreWriteError


class TestRagModels:
    def test_chunk_id(self) -> None:
        chunk = DocumentChunk(doc_key="guides/setup.pdf", ordinal=3, text="x")
        assert chunk.chunk_id == "guides/setup.pdf#3"

    def test_chunk_is_frozen(self) -> None:
        chunk = DocumentChunk(doc_key="a.txt", ordinal=0, text="x")
        with pytest.raises(ValidationError):
            chunk.text = "y"

    def test_negative_ordinal_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DocumentChunk(doc_key="a.txt", ordinal=-1, text="x")

    def test_page_numbers_are_one_based(self) -> None:
        with pytest.raises(ValidationError):
            PageText(page_number=0, text="x")

    def test_citation(self) -> None:
        result = SearchResult(document_key="faq.md", text="x", page_number=4, score=0.3)
        assert result.citation == "faq.md, p.4"

    def test_ingested_document_round_trips_json(self) -> None:
        record = IngestedDocument(
            key="a.txt",
            source_id="documents",
            fingerprint="f" * 64,
            ingested_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
            chunk_count=2,
        )
        assert IngestedDocument.model_validate_json(record.model_dump_json()) == record


class TestIngestionPlan:
    def _plan(self) -> IngestionPlan:
        return IngestionPlan(
            source_id="documents",
            new=["c.txt", "a.txt"],
            modified=["b.txt"],
            removed=["old.txt"],
            unchanged=["same.txt"],
            entries={"a.txt": SourceEntry(key="a.txt", fingerprint="1")},
        )

    def test_to_ingest_sorted(self) -> None:
        assert self._plan().to_ingest == ["a.txt", "b.txt", "c.txt"]

    def test_state_of(self) -> None:
        plan = self._plan()
        assert plan.state_of("a.txt") is DocumentState.NEW
        assert plan.state_of("b.txt") is DocumentState.MODIFIED
        assert plan.state_of("old.txt") is DocumentState.REMOVED
        assert plan.state_of("same.txt") is DocumentState.UNCHANGED
        assert plan.state_of("unknown.txt") is None

    def test_blocked_keys_report_their_state(self) -> None:
        plan = IngestionPlan(
            source_id="wiki",
            blocked=[
                DocumentOutcome(
                    key="readme.txt",
                    state=DocumentState.NEW,
                    status="failed",
                    error="DocumentKeyConflictError: readme.txt is already indexed",
                )
            ],
        )
        assert plan.state_of("readme.txt") is DocumentState.NEW
        assert plan.has_changes is False
        assert plan.to_ingest == []

    def test_has_changes(self) -> None:
        assert self._plan().has_changes is True
        assert IngestionPlan(source_id="documents", unchanged=["a"]).has_changes is False


class TestRunSummary:
    def test_failed_keys(self) -> None:
        summary = IngestionRunSummary(
            source_id="documents",
            succeeded=1,
            failed=1,
            outcomes=[
                DocumentOutcome(key="a.txt", state=DocumentState.NEW, status="succeeded"),
                DocumentOutcome(
                    key="b.txt",
                    state=DocumentState.MODIFIED,
                    status="failed",
                    error="SourceReadError: cannot read b.txt",
                ),
            ],
        )
        assert summary.failed_keys == ["b.txt"]

    def test_state_serializes_as_value(self) -> None:
        outcome = DocumentOutcome(key="a.txt", state=DocumentState.REMOVED, status="succeeded")
        assert outcome.model_dump(mode="json")["state"] == "removed"


class TestErrors:
    def test_str_prefixes_provider(self) -> None:
        exc = StoreWriteError(message="disk full", provider_name="sqlite")
        assert str(exc) == "[sqlite] disk full"
        assert exc.message == "disk full"
        assert exc.provider_name == "sqlite"

    def test_str_without_provider(self) -> None:
        assert str(ChatAppError(message="boom")) == "boom"

    def test_hierarchy(self) -> None:
        assert issubclass(StoreWriteError, ChatAppError)

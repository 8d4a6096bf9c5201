"""Ingestion run models: the per-run diff and its outcome summary."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from chatapp.models.rag import SourceEntry


class DocumentState(str, Enum):
    """How a key compares between the source scan and the index."""

    UNCHANGED = "unchanged"
    NEW = "new"
    MODIFIED = "modified"
    REMOVED = "removed"


class DocumentOutcome(BaseModel):
    """What happened to one NEW, MODIFIED or REMOVED document during a run."""

    model_config = ConfigDict(frozen=True)

    key: str
    state: DocumentState
    status: str = Field(description='"succeeded", "failed", "skipped" or "planned".')
    chunks_written: int = Field(default=0, ge=0)
    chunks_deleted: int = Field(default=0, ge=0)
    error: str | None = Field(
        default=None,
        description='Error type and message for failures, e.g. "SourceReadError: ...".',
    )
    attempts: int = Field(default=0, ge=0, description="Embedding attempts, including retries.")


class IngestionPlan(BaseModel):
    """The diff between a source scan and the index for one run.

    Every scanned or indexed key appears in exactly one of the four lists
    or in ``blocked``.  ``entries`` holds the scan entries for NEW and
    MODIFIED keys only.

    ``blocked`` holds keys the run must not touch, already resolved to
    failed outcomes: keys indexed under another source, and keys the scan
    saw but could not read.  A blocked key that is indexed keeps its
    stored version.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    new: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    blocked: list[DocumentOutcome] = Field(default_factory=list)
    entries: dict[str, SourceEntry] = Field(default_factory=dict)
    indexed_chunk_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Stored chunk count of MODIFIED and REMOVED keys before the run.",
    )

    @property
    def to_ingest(self) -> list[str]:
        """NEW and MODIFIED keys in key order."""
        return sorted(self.new + self.modified)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.modified or self.removed)

    def state_of(self, key: str) -> DocumentState | None:
        for state, keys in (
            (DocumentState.NEW, self.new),
            (DocumentState.MODIFIED, self.modified),
            (DocumentState.REMOVED, self.removed),
            (DocumentState.UNCHANGED, self.unchanged),
        ):
            if key in keys:
                return state
        for outcome in self.blocked:
            if outcome.key == key:
                return outcome.state
        return None


class IngestionRunSummary(BaseModel):
    """Aggregate result of one ingestion run.

    ``writes`` counts store mutations (replaces, deletes, orphan sweeps
    that removed something).  An idempotent re-run reports zero.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    run_id: str = Field(default="", description="Id bound to every log event of the run.")
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)
    unchanged: int = Field(default=0, ge=0)
    chunks_written: int = Field(default=0, ge=0)
    chunks_deleted: int = Field(default=0, ge=0)
    writes: int = Field(default=0, ge=0)
    duration_s: float = Field(default=0.0, ge=0.0)
    dry_run: bool = False
    outcomes: list[DocumentOutcome] = Field(default_factory=list)

    @property
    def failed_keys(self) -> list[str]:
        return [o.key for o in self.outcomes if o.status == "failed"]

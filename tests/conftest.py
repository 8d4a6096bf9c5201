"""Shared pytest fixtures for the chatapp test suite."""

from __future__ import annotations

import hashlib
import struct
import sys
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

from chatapp.config.settings import Settings
from chatapp.interfaces.document_source import IDocumentSource
from chatapp.interfaces.embedding_provider import IEmbeddingProvider
from chatapp.models.rag import LoadedDocument, PageText, SourceEntry
from chatapp.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from chatapp.services.ingestion.chunker import TextChunker
from chatapp.services.ingestion.ingestion_service import IngestionCoordinator
from chatapp.utils.errors import EmbeddingServiceError, SourceReadError

# ---------------------------------------------------------------------------
# Embedding fakes
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 128


def _hash_to_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Generate a deterministic fixed-length vector by hashing *text*.

    Uses SHA-256 to hash the text, then unpacks bytes into floats and
    normalises to unit length.  The same text always produces
    the same vector.
    """
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    # Extend the digest to cover `dim` floats (4 bytes each)
    raw = digest
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    raw = raw[: dim * 4]
    # Bytes reinterpreted as unsigned ints keep every component finite.
    values = [v / 2**32 - 0.5 for v in struct.unpack(f"<{dim}I", raw)]
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests.

    Records every batch it is asked to embed in ``calls``.
    """

    def __init__(self, dimension: int = _EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [_hash_to_vector(t, self._dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


class FlakyEmbeddingProvider(MockEmbeddingProvider):
    """Fails the first ``failures`` calls, then behaves like the mock."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self._remaining_failures = failures
        self.attempts = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.attempts += 1
        if self._remaining_failures > 0:
            self._remaining_failures -= 1
            raise EmbeddingServiceError(
                message="simulated transient failure",
                provider_name=self.get_provider_name(),
            )
        return await super().embed(texts)


class PoisonEmbeddingProvider(MockEmbeddingProvider):
    """Fails every batch containing a text with the word ``POISON``."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if any("POISON" in t for t in texts):
            self.attempts += 1
            raise EmbeddingServiceError(
                message="simulated permanent failure",
                provider_name=self.get_provider_name(),
            )
        return await super().embed(texts)


# ---------------------------------------------------------------------------
# Document source fake
# ---------------------------------------------------------------------------


class InMemorySource(IDocumentSource):
    """Document source backed by a dict of ``key -> page texts``.

    The fingerprint is the SHA-256 of the pages joined by form feeds, so
    editing any page changes it.  Keys listed in ``unreadable`` scan
    normally but fail to load.
    """

    def __init__(self, source_id: str = "documents") -> None:
        self._source_id = source_id
        self.documents: dict[str, list[str]] = {}
        self.unreadable: set[str] = set()
        self.loads: list[str] = []

    @property
    def source_id(self) -> str:
        return self._source_id

    def put(self, key: str, *pages: str) -> None:
        self.documents[key] = list(pages)

    def remove(self, key: str) -> None:
        del self.documents[key]

    @staticmethod
    def fingerprint_of(pages: list[str]) -> str:
        return hashlib.sha256("\f".join(pages).encode("utf-8")).hexdigest()

    async def scan(self) -> list[SourceEntry]:
        return [
            SourceEntry(key=key, fingerprint=self.fingerprint_of(pages))
            for key, pages in sorted(self.documents.items())
        ]

    async def load(self, entry: SourceEntry) -> LoadedDocument:
        self.loads.append(entry.key)
        if entry.key in self.unreadable or entry.key not in self.documents:
            raise SourceReadError(
                message=f"cannot read {entry.key}",
                provider_name=self.get_provider_name(),
                document_key=entry.key,
            )
        pages = self.documents[entry.key]
        return LoadedDocument(
            key=entry.key,
            fingerprint=self.fingerprint_of(pages),
            pages=[PageText(page_number=i, text=t) for i, t in enumerate(pages, start=1)],
        )

    def get_provider_name(self) -> str:
        return "in-memory"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def use_test_logging() -> None:
    """Send structlog output to stderr and never cache loggers.

    A cached PrintLogger keeps the stream it was created with, which is a
    closed buffer once a ``capsys`` test ends.
    """
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(30),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@pytest.fixture(scope="session", autouse=True)
def _test_logging() -> None:
    use_test_logging()


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Stop the app lifespan and the CLI from reconfiguring logging."""
    monkeypatch.setattr("chatapp.main.configure_logging", lambda **kwargs: None)
    monkeypatch.setattr("chatapp.cli.ingest.configure_logging", lambda **kwargs: None)


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    """Mock IEmbeddingProvider returning deterministic hash-based vectors."""
    return MockEmbeddingProvider()


@pytest.fixture
def memory_source() -> InMemorySource:
    return InMemorySource()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> SQLiteVectorStore:
    """An initialized SQLite store in a temporary directory."""
    store = SQLiteVectorStore(db_path=tmp_path / "index.db", expected_dimension=_EMBEDDING_DIM)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def chroma_store(tmp_path: Path):
    """An initialized ChromaDB store in a temporary directory."""
    from chatapp.providers.vector_store.chromadb_provider import ChromaDBVectorStore

    store = ChromaDBVectorStore(
        persist_directory=str(tmp_path / "chromadb_test"),
        collection_prefix="test",
        expected_dimension=_EMBEDDING_DIM,
    )
    await store.initialize()
    return store


@pytest_asyncio.fixture(params=["sqlite", "chromadb"])
async def vector_store(request: pytest.FixtureRequest, tmp_path: Path):
    """Each vector store backend, initialized in a temporary directory."""
    if request.param == "sqlite":
        store = SQLiteVectorStore(db_path=tmp_path / "index.db", expected_dimension=_EMBEDDING_DIM)
    else:
        from chatapp.providers.vector_store.chromadb_provider import ChromaDBVectorStore

        store = ChromaDBVectorStore(
            persist_directory=str(tmp_path / "chromadb_test"),
            collection_prefix="test",
            expected_dimension=_EMBEDDING_DIM,
        )
    await store.initialize()
    yield store
    await store.close()


def make_coordinator(
    vector_store,
    embedding_provider: IEmbeddingProvider | None = None,
    chunk_size: int = 50,
    **kwargs,
) -> IngestionCoordinator:
    """Build a coordinator with a small chunk size and no retry backoff."""
    kwargs.setdefault("embedding_retry_backoff_s", 0.0)
    return IngestionCoordinator(
        chunker=TextChunker(chunk_size=chunk_size, overlap=0),
        embedding_provider=embedding_provider or MockEmbeddingProvider(),
        vector_store=vector_store,
        **kwargs,
    )


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into a temporary directory."""
    return Settings(
        data_dir=str(tmp_path / "documents"),
        embedding_provider="fastembed",
        openai_api_key="",
        sqlite_db_path=str(tmp_path / "index.db"),
        chromadb_persist_dir=str(tmp_path / "chromadb"),
        ingest_on_startup=False,
        app_env="test",
    )


@pytest.fixture
def sample_book_text() -> str:
    """Multi-paragraph operations handbook text for chunker tests."""
    return (
        "Every support request is logged in the ticketing system before any "
        "work begins. The first responder assigns a priority from one to four "
        "based on customer impact. Priority one incidents page the on-call "
        "engineer immediately, regardless of the time of day.\n\n"
        "Refunds are processed within five business days of approval. A refund "
        "above the standard limit needs sign-off from a team lead. Partial "
        "refunds are recorded against the original invoice so the ledger stays "
        "consistent.\n\n"
        "Backups of the primary database run every night at two in the morning. "
        "Each backup is encrypted, copied to a second region, and kept for "
        "thirty days. A restore drill is performed at the start of every "
        "quarter to confirm the backups are usable.\n\n"
        "New employees receive laptop credentials on their first day. Access "
        "to production systems is granted only after the security training is "
        "complete. Access reviews happen twice a year and unused accounts are "
        "disabled.\n\n"
        "The office closes at six in the evening on weekdays. Visitors sign in "
        "at the front desk and wear a badge at all times. Deliveries are "
        "accepted between nine and five."
    )


async def drop_record_only(store, key: str) -> None:
    """Delete a document record but keep its chunks, as a crash mid-replace would."""
    if isinstance(store, SQLiteVectorStore):
        async with store._connect() as db:
            await db.execute("DELETE FROM documents WHERE key = ?", (key,))
        return
    store._documents.delete(ids=[key])


def deny_reads(
    monkeypatch: pytest.MonkeyPatch, *names: str, error: type[OSError] = PermissionError
) -> None:
    """Make ``Path.read_bytes`` fail for files with the given names."""
    real_read_bytes = Path.read_bytes

    def _read_bytes(self: Path) -> bytes:
        if self.name in names:
            raise error(f"[simulated] cannot read {self}")
        return real_read_bytes(self)

    monkeypatch.setattr(Path, "read_bytes", _read_bytes)

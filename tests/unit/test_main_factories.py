"""Unit tests for factory functions in chatapp/main.py.

Covers embedding provider selection, vector store selection, container
assembly with injected fakes, startup ingestion, and the create_app
factory.  No network calls or model downloads are made.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI

from chatapp.config.settings import Settings
from chatapp.main import (
    build_container,
    build_embedding_provider,
    build_vector_store,
    create_app,
    run_startup_ingestion,
)
from chatapp.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider
from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from chatapp.providers.source.directory_source import DirectorySource
from chatapp.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from chatapp.utils.errors import ConfigurationError, StoreReadError
from tests.conftest import InMemorySource, MockEmbeddingProvider


def _settings(tmp_path: Path, **overrides) -> Settings:
    defaults = {
        "data_dir": str(tmp_path / "documents"),
        "embedding_provider": "fastembed",
        "openai_api_key": "",
        "sqlite_db_path": str(tmp_path / "index.db"),
        "chromadb_persist_dir": str(tmp_path / "chromadb"),
        "ingest_on_startup": False,
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


# ======================================================================
# build_embedding_provider
# ======================================================================


class TestBuildEmbeddingProvider:
    def test_fastembed(self, tmp_path: Path) -> None:
        provider = build_embedding_provider(
            _settings(tmp_path, fastembed_model="BAAI/bge-small-en-v1.5")
        )
        assert isinstance(provider, FastEmbedEmbeddingProvider)
        assert provider.get_dimension() == 384

    def test_openai(self, tmp_path: Path) -> None:
        provider = build_embedding_provider(
            _settings(tmp_path, embedding_provider="openai", openai_api_key="sk-test")
        )
        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.get_dimension() == 1536


# ======================================================================
# build_vector_store
# ======================================================================


class TestBuildVectorStore:
    def test_sqlite_default(self, tmp_path: Path) -> None:
        store = build_vector_store(_settings(tmp_path), dimension=384)
        assert isinstance(store, SQLiteVectorStore)
        assert store.get_provider_name() == "sqlite"

    def test_chromadb(self, tmp_path: Path) -> None:
        from chatapp.providers.vector_store.chromadb_provider import ChromaDBVectorStore

        store = build_vector_store(
            _settings(tmp_path, vector_store_backend="chromadb"), dimension=384
        )
        assert isinstance(store, ChromaDBVectorStore)
        assert store.get_provider_name() == "chromadb"


# ======================================================================
# build_container
# ======================================================================


class TestBuildContainer:
    @pytest.mark.asyncio
    async def test_injected_collaborators_are_used(self, tmp_path: Path) -> None:
        embedder = MockEmbeddingProvider()
        source = InMemorySource()
        container = await build_container(
            _settings(tmp_path), embedding_provider=embedder, source=source
        )
        try:
            assert container.embedding_provider is embedder
            assert container.source is source
            assert isinstance(container.vector_store, SQLiteVectorStore)
            assert container.vector_store.is_available() is True
        finally:
            await container.close()

    @pytest.mark.asyncio
    async def test_settings_flow_into_services(self, tmp_path: Path) -> None:
        container = await build_container(
            _settings(tmp_path, chunk_size=64, chunk_overlap=8, source_id="handbook"),
            embedding_provider=MockEmbeddingProvider(),
        )
        try:
            assert container.chunker.chunk_size == 64
            assert container.chunker.overlap == 8
            assert isinstance(container.source, DirectorySource)
            assert container.source.source_id == "handbook"
        finally:
            await container.close()

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_configuration_error(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        source = InMemorySource()
        source.put("a.txt", "Some text worth indexing.")

        first = await build_container(
            settings, embedding_provider=MockEmbeddingProvider(dimension=128), source=source
        )
        await first.coordinator.run(first.source)
        await first.close()

        with pytest.raises(ConfigurationError):
            await build_container(
                settings, embedding_provider=MockEmbeddingProvider(dimension=64), source=source
            )


# ======================================================================
# run_startup_ingestion
# ======================================================================


class TestRunStartupIngestion:
    @pytest.mark.asyncio
    async def test_ingests_source(self, tmp_path: Path) -> None:
        source = InMemorySource()
        source.put("a.txt", "Startup ingestion indexes this page.")
        container = await build_container(
            _settings(tmp_path), embedding_provider=MockEmbeddingProvider(), source=source
        )
        try:
            await run_startup_ingestion(container)
            stats = await container.coordinator.get_corpus_stats()
            assert stats.total_documents == 1
        finally:
            await container.close()

    @pytest.mark.asyncio
    async def test_store_failure_is_logged_not_raised(self) -> None:
        container = MagicMock()
        container.coordinator.run = AsyncMock(
            side_effect=StoreReadError(message="locked", provider_name="sqlite")
        )
        await run_startup_ingestion(container)
        container.coordinator.run.assert_awaited_once()


# ======================================================================
# create_app
# ======================================================================


class TestCreateApp:
    def test_returns_fastapi_instance(self) -> None:
        app = create_app()
        assert isinstance(app, FastAPI)
        assert app.title == "chatapp API"
        assert app.version == "0.1.0"

    def test_app_has_api_routes(self) -> None:
        paths = {getattr(route, "path", "") for route in create_app().routes}
        assert {
            "/api/v1/health",
            "/api/v1/search",
            "/api/v1/ingest",
            "/api/v1/corpus/stats",
        } <= paths

    def test_module_level_app_is_fastapi(self) -> None:
        from chatapp.main import app

        assert isinstance(app, FastAPI)

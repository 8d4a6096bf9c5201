"""chatapp FastAPI application entry point and composition root.

Wires together the document source, embedding provider, vector store,
chunker, ingestion coordinator and search service via constructor
injection.  Everything is built exactly once, from typed settings that
were validated once, in :func:`build_container`; nothing below looks
dependencies up from globals.

On startup the lifespan runs one ingestion pass (``INGEST_ON_STARTUP``) so
the index matches the document folder before the first search is served.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
import uvicorn
from fastapi import FastAPI

from chatapp.api.middleware import (
    ErrorHandlingMiddleware,
    RequestContextMiddleware,
    configure_cors,
)
from chatapp.api.routes import router as api_router
from chatapp.config.loader import load_settings
from chatapp.config.settings import Settings
from chatapp.interfaces.document_source import IDocumentSource
from chatapp.interfaces.embedding_provider import IEmbeddingProvider
from chatapp.interfaces.vector_store_provider import IVectorStoreProvider
from chatapp.providers.source.directory_source import DirectorySource
from chatapp.services.ingestion.chunker import TextChunker
from chatapp.services.ingestion.ingestion_service import IngestionCoordinator
from chatapp.services.search_service import SemanticSearchService
from chatapp.utils.errors import StoreError
from chatapp.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Return the embedding provider named by ``EMBEDDING_PROVIDER``."""
    if app_settings.embedding_provider == "fastembed":
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        return FastEmbedEmbeddingProvider(
            model_name=app_settings.fastembed_model,
            timeout_s=app_settings.embedding_timeout_s,
        )

    from chatapp.providers.embedding.openai_embedding_provider import (
        OpenAIEmbeddingProvider,
    )

    return OpenAIEmbeddingProvider(settings=app_settings)


def build_vector_store(app_settings: Settings, dimension: int | None) -> IVectorStoreProvider:
    """Return the vector store named by ``VECTOR_STORE_BACKEND``."""
    if app_settings.vector_store_backend == "chromadb":
        # Imported lazily: importing chromadb starts its client machinery.
        from chatapp.providers.vector_store.chromadb_provider import ChromaDBVectorStore

        return ChromaDBVectorStore(
            persist_directory=app_settings.chromadb_persist_dir,
            collection_prefix=app_settings.chromadb_collection_prefix,
            expected_dimension=dimension,
        )

    from chatapp.providers.vector_store.sqlite_vector_store import SQLiteVectorStore

    return SQLiteVectorStore(db_path=app_settings.sqlite_db_path, expected_dimension=dimension)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass
class AppContainer:
    """Every long-lived collaborator, built once at startup."""

    settings: Settings
    source: IDocumentSource
    embedding_provider: IEmbeddingProvider
    vector_store: IVectorStoreProvider
    chunker: TextChunker
    coordinator: IngestionCoordinator
    search_service: SemanticSearchService

    async def close(self) -> None:
        await self.vector_store.close()


async def build_container(
    app_settings: Settings,
    *,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
    source: IDocumentSource | None = None,
) -> AppContainer:
    """Assemble and initialize the application's dependency graph.

    Collaborators passed explicitly replace the ones the settings would
    select, which is how tests inject fakes.

    Raises
    ------
    chatapp.utils.errors.ConfigurationError
        If the chunker settings are invalid or the stored vectors do not
        match the embedding provider's dimension.
    """
    embedder = embedding_provider or build_embedding_provider(app_settings)
    store = vector_store or build_vector_store(app_settings, embedder.get_dimension())
    await store.initialize()

    document_source = source or DirectorySource(
        root=app_settings.data_dir,
        patterns=app_settings.source_patterns,
        source_id=app_settings.source_id,
    )
    chunker = TextChunker(
        chunk_size=app_settings.chunk_size,
        overlap=app_settings.chunk_overlap,
    )
    coordinator = IngestionCoordinator(
        chunker=chunker,
        embedding_provider=embedder,
        vector_store=store,
        concurrency=app_settings.ingestion_concurrency,
        embedding_batch_size=app_settings.embedding_batch_size,
        embedding_max_retries=app_settings.embedding_max_retries,
        embedding_retry_backoff_s=app_settings.embedding_retry_backoff_s,
    )
    search_service = SemanticSearchService(
        embedding_provider=embedder,
        vector_store=store,
        default_top_k=app_settings.search_default_top_k,
        max_top_k=app_settings.search_max_top_k,
    )

    _logger.info(
        "container_built",
        source=document_source.get_provider_name(),
        embedding=embedder.get_provider_name(),
        dimension=embedder.get_dimension(),
        vector_store=store.get_provider_name(),
    )
    return AppContainer(
        settings=app_settings,
        source=document_source,
        embedding_provider=embedder,
        vector_store=store,
        chunker=chunker,
        coordinator=coordinator,
        search_service=search_service,
    )


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


async def run_startup_ingestion(container: AppContainer) -> None:
    """Run the startup ingestion pass.

    Per-document failures are already isolated in the summary.  A store
    failure during the sweep or listing is logged and the app keeps
    serving the index as it was.
    """
    try:
        await container.coordinator.run(container.source)
    except StoreError as exc:
        _logger.error("startup_ingestion_failed", error=str(exc), provider=exc.provider_name)


def create_app(
    app_settings: Settings | None = None,
    container: AppContainer | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    app_settings:
        Settings to use.  When omitted they are loaded (YAML + env) and
        validated inside the lifespan, so importing this module never
        reads configuration.
    container:
        A pre-built container; skips :func:`build_container`.
    """

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        resolved = container.settings if container else (app_settings or load_settings())
        configure_logging(
            log_level=resolved.log_level,
            json_output=(resolved.app_env == "production"),
        )
        built = container or await build_container(resolved)
        application.state.container = built

        _logger.info(
            "app_startup",
            version=_VERSION,
            environment=resolved.app_env,
            vector_store=built.vector_store.get_provider_name(),
        )

        if resolved.ingest_on_startup:
            await run_startup_ingestion(built)

        yield

        await built.close()
        _logger.info("app_shutdown")

    application = FastAPI(
        title="chatapp API",
        version=_VERSION,
        description=(
            "Incrementally ingests a document folder into a chunk-level vector "
            "index and serves cited semantic search for a chat front end."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestContextMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    _settings = load_settings()
    uvicorn.run(
        "chatapp.main:app",
        host=_settings.app_host,
        port=_settings.app_port,
        reload=(_settings.app_env == "development"),
    )

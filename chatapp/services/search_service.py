"""Semantic search over the indexed corpus.

The :class:`SemanticSearchService` is the read-only side of the pipeline:
it embeds a natural-language query and asks the vector store for the
nearest chunks.  Results come back as (text, citation) pairs a chat model
can ground an answer on; :meth:`SemanticSearchService.format_for_chat`
renders them as tagged blocks for direct inclusion in a prompt or tool
response.

Error contract:
    * empty query or non-positive ``top_k`` -> :class:`QueryValidationError`,
      raised before the embedding service is called
    * embedding failure -> :class:`EmbeddingServiceError` (propagated)
    * store failure -> :class:`SearchServiceError`; never masked as an
      empty result, which is reserved for "index empty or no matches"
"""

from __future__ import annotations

from html import escape
from typing import TYPE_CHECKING

import structlog

from chatapp.models.rag import SearchResult
from chatapp.utils.errors import QueryValidationError, SearchServiceError, StoreError

if TYPE_CHECKING:
    from chatapp.interfaces.embedding_provider import IEmbeddingProvider
    from chatapp.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)


class SemanticSearchService:
    """Embeds queries and returns the nearest stored chunks.

    Parameters
    ----------
    embedding_provider:
        Must be the same provider (same model, same dimension) used at
        ingestion time.
    vector_store:
        Read only; the service never writes.
    default_top_k:
        Result count used when the caller does not pass one.
    max_top_k:
        Upper bound; larger requests are clamped to it.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        default_top_k: int = 5,
        max_top_k: int = 50,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._default_top_k = default_top_k
        self._max_top_k = max_top_k

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        document_key: str | None = None,
    ) -> list[SearchResult]:
        """Return up to *top_k* chunks most similar to *query*, best first.

        Parameters
        ----------
        query:
            Natural-language query; must contain non-whitespace text.
        top_k:
            Maximum number of results (positive).  Defaults to the
            configured default and is clamped to the configured maximum.
        document_key:
            Restrict the search to one document.

        Raises
        ------
        QueryValidationError
            If *query* is blank or *top_k* is not positive.
        SearchServiceError
            If the vector store fails.
        """
        if top_k is None:
            top_k = self._default_top_k
        if not query or not query.strip():
            raise QueryValidationError(message="Search query must not be empty")
        if top_k <= 0:
            raise QueryValidationError(message=f"top_k must be positive, got {top_k}")
        if top_k > self._max_top_k:
            logger.debug("search_top_k_clamped", requested=top_k, max_top_k=self._max_top_k)
            top_k = self._max_top_k

        query_vector = await self._embedding_provider.embed_single(query.strip())

        try:
            results = await self._vector_store.search(
                query_vector,
                top_k=top_k,
                document_key=document_key,
            )
        except StoreError as exc:
            logger.error("search_store_failed", error=str(exc))
            raise SearchServiceError(
                message=f"Search failed: {exc.message}",
                provider_name=exc.provider_name,
            ) from exc

        results = sorted(results, key=lambda r: r.score, reverse=True)[:top_k]
        logger.info(
            "semantic_search",
            query_length=len(query),
            top_k=top_k,
            document_key=document_key,
            results_count=len(results),
            top_score=round(results[0].score, 4) if results else 0.0,
        )
        return results

    @staticmethod
    def format_for_chat(results: list[SearchResult]) -> str:
        """Render results as ``<result source=".." page="..">text</result>`` blocks.

        Returns an empty string for an empty list.
        """
        blocks = [
            f'<result source="{escape(r.document_key)}" page="{r.page_number}">\n'
            f"{r.text}\n"
            f"</result>"
            for r in results
        ]
        return "\n".join(blocks)

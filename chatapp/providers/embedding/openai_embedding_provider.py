"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible endpoints (GitHub Models,
Azure AI inference) via a custom ``base_url`` and model name.

The client is built with ``max_retries=0``: retry policy belongs to the
ingestion coordinator, which retries whole batches with its own backoff.
"""

from __future__ import annotations

import openai
import structlog

from chatapp.config.settings import Settings
from chatapp.interfaces.embedding_provider import IEmbeddingProvider
from chatapp.utils.errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}

_DEFAULT_MODEL = "text-embedding-3-small"


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_base_url`` is configured, the client points at that URL.
    Each call to :meth:`embed` is exactly one API request; the caller sizes
    the batches.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        # Build client kwargs — add base_url only when configured.
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": settings.embedding_timeout_s,
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Raises :class:`EmbeddingServiceError` on any API or transport error
        (timeouts included) and when the response does not carry exactly one
        vector of the expected dimension per input text.
        """
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(
                input=texts,
                model=self._model,
            )
        except openai.APIError as exc:
            raise EmbeddingServiceError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        # The API tags each item with its input index; order by it rather
        # than trusting response order.
        items = sorted(response.data, key=lambda item: item.index)
        embeddings = [list(item.embedding) for item in items]
        self._validate(texts, embeddings)

        logger.debug(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return embeddings

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, texts: list[str], embeddings: list[list[float]]) -> None:
        if len(embeddings) != len(texts):
            raise EmbeddingServiceError(
                message=(
                    f"Embedding response has {len(embeddings)} vectors "
                    f"for {len(texts)} inputs"
                ),
                provider_name=self.get_provider_name(),
            )
        for vector in embeddings:
            if len(vector) != self._dimension:
                raise EmbeddingServiceError(
                    message=(
                        f"Embedding dimension {len(vector)} does not match "
                        f"expected {self._dimension} for model {self._model}"
                    ),
                    provider_name=self.get_provider_name(),
                )

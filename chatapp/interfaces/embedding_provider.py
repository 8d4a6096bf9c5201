"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap the OpenAI embeddings API (or any
OpenAI-compatible endpoint such as GitHub Models), a local FastEmbed ONNX
model, or a deterministic fake in tests.  Embedding providers are
interchangeable behind this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider     — text-embedding-3-small (requires API key)
#   FastEmbedEmbeddingProvider  — BAAI/bge-small-en-v1.5, local ONNX, no key
# Located in: chatapp/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and search.

    Embeddings are consumed by
    :class:`~chatapp.interfaces.vector_store_provider.IVectorStoreProvider`
    for indexing and query-time similarity search.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  The caller controls batch
            size; implementations send the list as given.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        chatapp.utils.errors.EmbeddingServiceError
            If the call fails, times out, or the response has the wrong
            number of vectors or the wrong dimensionality.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Convenience wrapper around :meth:`embed` for the common single-text
        case (embedding a search query).
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider instance.  Example values:
        ``1536`` (``text-embedding-3-small``), ``384`` (``bge-small-en-v1.5``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations check credentials or installed models without
        generating an actual embedding.
        """

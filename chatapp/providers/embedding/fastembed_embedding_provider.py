"""Local ONNX-based embedding provider using fastembed.

Wraps the ``fastembed`` library to implement :class:`IEmbeddingProvider`
using ONNX Runtime — **no PyTorch dependency required**.  Fully free,
runs on CPU, no API key.

Default model: ``BAAI/bge-small-en-v1.5`` (384 dimensions).
"""

from __future__ import annotations

import asyncio

import structlog

from chatapp.interfaces.embedding_provider import IEmbeddingProvider
from chatapp.utils.errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)

# Known model dimensions for fastembed-supported models.
_MODEL_DIMENSIONS: dict[str, int] = {
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "intfloat/multilingual-e5-large": 1024,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
}

_DEFAULT_MODEL = "BAAI/bge-small-en-v1.5"


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by fastembed (ONNX Runtime).

    Loads the ONNX model on first use (lazy initialization).  Inference is
    synchronous, so it runs in a worker thread via ``asyncio.to_thread``
    and bounded by *timeout_s*.
    """

    def __init__(self, model_name: str | None = None, timeout_s: float = 30.0) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model_name, 384)
        self._timeout_s = timeout_s
        self._model = None  # Lazy-loaded

    def _load_model(self) -> None:
        """Lazy-load the fastembed model."""
        if self._model is not None:
            return
        try:
            from fastembed import TextEmbedding

            logger.info(
                "loading_fastembed_model",
                model=self._model_name,
                msg="Loading ONNX model (first use downloads the weights)...",
            )
            self._model = TextEmbedding(model_name=self._model_name)
            logger.info(
                "fastembed_model_loaded",
                model=self._model_name,
                dimension=self._dimension,
            )
        except Exception as exc:
            raise EmbeddingServiceError(
                message=f"Failed to load fastembed model '{self._model_name}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        # fastembed returns a generator of numpy arrays
        return [v.tolist() for v in self._model.embed(texts)]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts."""
        if not texts:
            return []

        try:
            embeddings = await asyncio.wait_for(
                asyncio.to_thread(self._embed_sync, texts),
                timeout=self._timeout_s,
            )
        except EmbeddingServiceError:
            raise
        except asyncio.TimeoutError as exc:
            raise EmbeddingServiceError(
                message=f"Fastembed embedding timed out after {self._timeout_s}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except Exception as exc:
            raise EmbeddingServiceError(
                message=f"Fastembed embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if len(embeddings) != len(texts) or any(
            len(v) != self._dimension for v in embeddings
        ):
            raise EmbeddingServiceError(
                message=(
                    f"Fastembed returned {len(embeddings)} vectors for {len(texts)} "
                    f"inputs, expected dimension {self._dimension}"
                ),
                provider_name=self.get_provider_name(),
            )
        return embeddings

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return f"fastembed_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if fastembed is installed."""
        try:
            import fastembed  # noqa: F401

            return True
        except ImportError:
            return False

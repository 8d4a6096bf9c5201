"""Unit tests for the OpenAI-compatible and FastEmbed embedding providers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from chatapp.config.settings import Settings
from chatapp.utils.errors import EmbeddingServiceError


def _settings(**overrides) -> Settings:
    defaults = {
        "embedding_provider": "openai",
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(*vectors: list[float], reverse: bool = False) -> MagicMock:
    items = [MagicMock(embedding=v, index=i) for i, v in enumerate(vectors)]
    if reverse:
        items.reverse()
    response = MagicMock()
    response.data = items
    response.usage = MagicMock(total_tokens=10)
    return response


def _client_returning(response: MagicMock | None = None, error: Exception | None = None):
    mock_client = AsyncMock()
    if error is not None:
        mock_client.embeddings.create = AsyncMock(side_effect=error)
    else:
        mock_client.embeddings.create = AsyncMock(return_value=response)
    return mock_client


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_get_provider_name(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        assert OpenAIEmbeddingProvider(settings).get_provider_name() == "openai_embedding"

    def test_compatible_endpoint_label(self) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        provider = OpenAIEmbeddingProvider(
            _settings(openai_base_url="https://models.example.test/inference")
        )
        assert provider.get_provider_name() == "openai-compatible_embedding"

    def test_is_available_with_key(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        assert OpenAIEmbeddingProvider(settings).is_available() is True

    def test_is_available_without_key(self) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        assert OpenAIEmbeddingProvider(_settings(openai_api_key="")).is_available() is False

    def test_default_dimension(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        assert OpenAIEmbeddingProvider(settings).get_dimension() == 1536

    def test_large_model_dimension(self) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="text-embedding-3-large")
        )
        assert provider.get_dimension() == 3072

    def test_client_has_no_hidden_retries(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"
        ) as client_cls:
            OpenAIEmbeddingProvider(settings)
        kwargs = client_cls.call_args.kwargs
        assert kwargs["max_retries"] == 0
        assert kwargs["timeout"] == settings.embedding_timeout_s
        assert "base_url" not in kwargs

    @pytest.mark.asyncio
    async def test_embed_success(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        dim = 1536
        mock_client = _client_returning(_response([0.1] * dim, [0.2] * dim))

        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            result = await provider.embed(["hello", "world"])

        assert len(result) == 2
        assert len(result[0]) == dim
        mock_client.embeddings.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_embed_orders_by_index(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        dim = 1536
        mock_client = _client_returning(_response([0.1] * dim, [0.2] * dim, reverse=True))

        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            result = await OpenAIEmbeddingProvider(settings).embed(["first", "second"])

        assert result[0][0] == pytest.approx(0.1)
        assert result[1][0] == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_embed_single(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = _client_returning(_response([0.5] * 1536))
        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            result = await OpenAIEmbeddingProvider(settings).embed_single("hello")

        assert len(result) == 1536

    @pytest.mark.asyncio
    async def test_embed_empty_makes_no_request(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        mock_client = _client_returning(_response())
        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            assert await OpenAIEmbeddingProvider(settings).embed([]) == []
        mock_client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embed_api_error(self, settings: Settings) -> None:
        import openai

        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        error = openai.APIError(message="Rate limit", request=MagicMock(), body=None)
        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=_client_returning(error=error),
        ):
            provider = OpenAIEmbeddingProvider(settings)
            with pytest.raises(EmbeddingServiceError, match="Rate limit"):
                await provider.embed(["hello"])

    @pytest.mark.asyncio
    async def test_wrong_vector_count(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=_client_returning(_response([0.1] * 1536)),
        ):
            with pytest.raises(EmbeddingServiceError, match="1 vectors for 2 inputs"):
                await OpenAIEmbeddingProvider(settings).embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_wrong_dimension(self, settings: Settings) -> None:
        from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        with patch(
            "chatapp.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=_client_returning(_response([0.1] * 10)),
        ):
            with pytest.raises(EmbeddingServiceError, match="dimension"):
                await OpenAIEmbeddingProvider(settings).embed(["a"])


# ======================================================================
# FastEmbed Embedding Provider
# ======================================================================


class TestFastEmbedEmbeddingProvider:
    def test_defaults(self) -> None:
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        provider = FastEmbedEmbeddingProvider()
        assert provider.get_dimension() == 384
        assert provider.get_provider_name() == "fastembed_bge-small-en-v1.5"

    def test_model_not_loaded_on_construction(self) -> None:
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        with patch("fastembed.TextEmbedding") as model_cls:
            FastEmbedEmbeddingProvider()
        model_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_embed_success(self) -> None:
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        fake_model = MagicMock()
        fake_model.embed = MagicMock(
            side_effect=lambda texts: iter([np.full(384, 0.25) for _ in texts])
        )
        with patch("fastembed.TextEmbedding", return_value=fake_model) as model_cls:
            provider = FastEmbedEmbeddingProvider()
            first = await provider.embed(["a", "b"])
            second = await provider.embed_single("c")

        assert len(first) == 2
        assert len(first[0]) == 384
        assert len(second) == 384
        model_cls.assert_called_once()

    @pytest.mark.asyncio
    async def test_dimension_mismatch_raises(self) -> None:
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        fake_model = MagicMock()
        fake_model.embed = MagicMock(return_value=iter([np.zeros(10)]))
        with patch("fastembed.TextEmbedding", return_value=fake_model):
            with pytest.raises(EmbeddingServiceError):
                await FastEmbedEmbeddingProvider().embed(["a"])

    @pytest.mark.asyncio
    async def test_model_load_failure_raises(self) -> None:
        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        with patch("fastembed.TextEmbedding", side_effect=RuntimeError("no network")):
            with pytest.raises(EmbeddingServiceError, match="Failed to load"):
                await FastEmbedEmbeddingProvider().embed(["a"])

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        import time

        from chatapp.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        def _slow(texts):
            time.sleep(0.3)
            return iter([np.zeros(384) for _ in texts])

        fake_model = MagicMock()
        fake_model.embed = MagicMock(side_effect=_slow)
        with patch("fastembed.TextEmbedding", return_value=fake_model):
            provider = FastEmbedEmbeddingProvider(timeout_s=0.05)
            with pytest.raises(EmbeddingServiceError, match="timed out"):
                await provider.embed(["a"])

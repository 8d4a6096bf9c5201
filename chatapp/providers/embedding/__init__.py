"""Embedding provider adapters."""

from chatapp.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider
from chatapp.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["FastEmbedEmbeddingProvider", "OpenAIEmbeddingProvider"]

"""Public interface definitions for chatapp's external collaborators.

Every document source, embedding service and vector store is accessed
through the abstract base classes in this package.  Concrete adapters live
in ``chatapp/providers/`` and are chosen once, in ``chatapp/main.py``, from
typed settings.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in chatapp/providers/)
    ─────────────────────────────────────────────────────────────────────
    IDocumentSource            →  DirectorySource
    IEmbeddingProvider         →  OpenAIEmbeddingProvider,
                                  FastEmbedEmbeddingProvider
    IVectorStoreProvider       →  SQLiteVectorStore, ChromaDBVectorStore
"""

from chatapp.interfaces.document_source import IDocumentSource
from chatapp.interfaces.embedding_provider import IEmbeddingProvider
from chatapp.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IDocumentSource",
    "IEmbeddingProvider",
    "IVectorStoreProvider",
]

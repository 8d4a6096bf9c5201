"""Vector store provider implementations.

Two implementations of IVectorStoreProvider:
    1. SQLiteVectorStore   — default.  aiosqlite + numpy cosine search, strict
       transactional chunk replacement.
    2. ChromaDBVectorStore — ChromaDB persistent collections, delete-then-insert
       replacement with a brief zero-chunk visibility gap.

ChromaDBVectorStore is imported directly where needed so that importing this
package does not start ChromaDB.
"""

from chatapp.providers.vector_store.sqlite_vector_store import SQLiteVectorStore

__all__ = ["SQLiteVectorStore"]

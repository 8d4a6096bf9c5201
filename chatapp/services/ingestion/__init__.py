"""Incremental document ingestion for the chatapp knowledge base.

Pipeline per changed document: **load -> chunk -> embed -> replace**.

1. **Load** (IDocumentSource) -- reads the raw document and extracts text
   page by page.

2. **Chunk** (chunker.py / TextChunker) -- splits each page into ~200-token
   chunks, preserving paragraph and sentence boundaries.

3. **Embed** (via IEmbeddingProvider) -- generates dense vectors in
   batches, retrying failed batches with exponential backoff.

4. **Replace** (via IVectorStoreProvider) -- swaps the document's stored
   chunk set for the new one as a single unit.

The IngestionCoordinator diffs the source against the index first, so only
NEW and MODIFIED documents go through the pipeline and REMOVED ones are
deleted.
"""

from chatapp.services.ingestion.chunker import TextChunker
from chatapp.services.ingestion.ingestion_service import IngestionCoordinator

__all__ = ["IngestionCoordinator", "TextChunker"]

"""Abstract base class for document sources.

A document source owns a set of documents identified by stable keys.  It
supports two reads with very different costs:

* :meth:`IDocumentSource.scan` lists every key with a content fingerprint
  and never extracts text, so the ingestion coordinator can diff the whole
  source against the index cheaply on every startup.
* :meth:`IDocumentSource.load` reads one document and extracts its text
  page by page; it is only called for NEW and MODIFIED keys.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatapp.models.rag import LoadedDocument, SourceEntry


# Concrete implementation: DirectorySource (chatapp/providers/source/)
class IDocumentSource(ABC):
    """Contract for enumerating and loading documents to be indexed."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Namespace of the keys this source yields.

        The index records it per document, so a run only ever removes
        documents that belong to the source being ingested.
        """

    @abstractmethod
    async def scan(self) -> list[SourceEntry]:
        """Enumerate current documents with their fingerprints.

        Returns
        -------
        list[SourceEntry]
            One entry per document, sorted by key.  Keys are unique.  A
            document that exists but cannot be hashed is still listed,
            with ``read_error`` set, so it is never mistaken for removed.
        """

    @abstractmethod
    async def load(self, entry: SourceEntry) -> LoadedDocument:
        """Read one document and extract its text per page.

        Raises
        ------
        chatapp.utils.errors.SourceReadError
            If the document is missing, corrupt, of an unsupported type,
            or its text cannot be decoded.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this source."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the source can currently be scanned."""

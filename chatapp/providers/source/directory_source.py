"""Filesystem document source.

Recursively enumerates files under a root directory that match a set of
glob patterns (``*.pdf``, ``*.txt``, ``*.md`` by default).  Keys are
POSIX-style paths relative to the root, so they stay stable across
machines and restarts.

Two reads with very different costs:

* ``scan()`` hashes raw bytes (SHA-256) and never extracts text.
* ``load()`` extracts text page by page — PyMuPDF (``fitz``) for PDFs,
  strict UTF-8 for text files, where a form feed (``\\f``) separates pages.
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
from pathlib import Path

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from chatapp.interfaces.document_source import IDocumentSource
from chatapp.models.rag import LoadedDocument, PageText, SourceEntry
from chatapp.utils.errors import SourceReadError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_PATTERNS: tuple[str, ...] = ("*.pdf", "*.txt", "*.md")

_CONTENT_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".md": "text/markdown",
    ".txt": "text/plain",
}

_PAGE_BREAK = "\f"


class DirectorySource(IDocumentSource):
    """Document source backed by a directory tree on local disk."""

    def __init__(
        self,
        root: str | Path,
        patterns: list[str] | tuple[str, ...] | None = None,
        source_id: str = "documents",
    ) -> None:
        self._root = Path(root)
        self._patterns = tuple(patterns) if patterns else _DEFAULT_PATTERNS
        self._source_id = source_id

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # IDocumentSource implementation
    # ------------------------------------------------------------------

    async def scan(self) -> list[SourceEntry]:
        """Enumerate matching files with their fingerprints, sorted by key.

        A file deleted between listing and hashing is omitted, since it is
        gone.  A file that exists but cannot be read (permissions, I/O
        error) is returned with ``read_error`` set and an empty
        fingerprint, so the coordinator keeps its indexed version instead
        of deleting it.
        """
        return await asyncio.to_thread(self._scan_sync)

    async def load(self, entry: SourceEntry) -> LoadedDocument:
        """Read *entry* and extract its text per page.

        Raises
        ------
        SourceReadError
            If the file is missing, is an unsupported type, cannot be opened
            as a PDF, or is not valid UTF-8 text.
        """
        return await asyncio.to_thread(self._load_sync, entry.key)

    def get_provider_name(self) -> str:
        return "directory"

    def is_available(self) -> bool:
        return self._root.is_dir()

    # ------------------------------------------------------------------
    # Internals (run in a worker thread)
    # ------------------------------------------------------------------

    def _matches(self, path: Path) -> bool:
        return any(fnmatch.fnmatch(path.name.lower(), p.lower()) for p in self._patterns)

    def _scan_sync(self) -> list[SourceEntry]:
        if not self._root.is_dir():
            logger.warning("source_root_missing", root=str(self._root))
            return []

        entries: list[SourceEntry] = []
        for path in self._root.rglob("*"):
            if not path.is_file() or not self._matches(path):
                continue
            key = path.relative_to(self._root).as_posix()
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                logger.debug("source_scan_vanished", key=key)
                continue
            except OSError as exc:
                logger.warning("source_scan_unreadable", key=key, error=str(exc))
                entries.append(SourceEntry(key=key, fingerprint="", read_error=str(exc)))
                continue
            entries.append(
                SourceEntry(
                    key=key,
                    fingerprint=hashlib.sha256(raw).hexdigest(),
                    size=len(raw),
                )
            )

        entries.sort(key=lambda e: e.key)
        logger.debug("source_scanned", root=str(self._root), documents=len(entries))
        return entries

    def _load_sync(self, key: str) -> LoadedDocument:
        path = self._root / key
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise SourceReadError(
                message=f"Cannot read {key}: {exc}",
                provider_name=self.get_provider_name(),
                document_key=key,
            ) from exc

        suffix = path.suffix.lower()
        content_type = _CONTENT_TYPES.get(suffix)
        if content_type is None:
            raise SourceReadError(
                message=f"Unsupported document type '{suffix}' for {key}",
                provider_name=self.get_provider_name(),
                document_key=key,
            )

        if suffix == ".pdf":
            pages = self._extract_pdf_pages(key, raw)
        else:
            pages = self._extract_text_pages(key, raw)

        return LoadedDocument(
            key=key,
            fingerprint=hashlib.sha256(raw).hexdigest(),
            pages=pages,
            content_type=content_type,
        )

    def _extract_pdf_pages(self, key: str, raw: bytes) -> list[PageText]:
        """Extract text from each page.  Empty pages are kept so numbering holds."""
        try:
            doc = fitz.open(stream=raw, filetype="pdf")
        except Exception as exc:
            raise SourceReadError(
                message=f"Cannot open PDF {key}: {exc}",
                provider_name=self.get_provider_name(),
                document_key=key,
            ) from exc

        pages: list[PageText] = []
        try:
            for page_num in range(len(doc)):
                page = doc[page_num]
                pages.append(PageText(page_number=page_num + 1, text=page.get_text("text")))
        except Exception as exc:
            raise SourceReadError(
                message=f"Text extraction failed for {key}: {exc}",
                provider_name=self.get_provider_name(),
                document_key=key,
            ) from exc
        finally:
            doc.close()

        if not any(p.text.strip() for p in pages):
            logger.warning("pdf_no_text_extracted", key=key, pages=len(pages))
        return pages

    def _extract_text_pages(self, key: str, raw: bytes) -> list[PageText]:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SourceReadError(
                message=f"{key} is not valid UTF-8: {exc}",
                provider_name=self.get_provider_name(),
                document_key=key,
            ) from exc

        text = text.removeprefix("\ufeff")
        return [
            PageText(page_number=number, text=page_text)
            for number, page_text in enumerate(text.split(_PAGE_BREAK), start=1)
        ]

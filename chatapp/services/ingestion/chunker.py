"""Text chunking with paragraph boundary preservation.

Splits extracted document text into :class:`~chatapp.models.rag.DocumentChunk`
objects sized for embedding models (~200 tokens each, no overlap by
default).

The chunking strategy has three design goals:

1. **Paragraph-preserving** -- Chunk boundaries align with paragraph breaks
   (double newlines) so a chunk rarely starts or ends mid-thought.

2. **Page-exact** -- Each page is chunked on its own, so a chunk never spans
   two pages and its ``page_number`` is exact.  Ordinals still run
   consecutively across the whole document.

3. **Deterministic** -- Token counts come from a pure regex estimate (words
   and punctuation marks), with no tokenizer download and no randomness.
   Re-chunking identical text yields identical chunks, which is what makes
   re-ingesting an unchanged document a no-op.

When a paragraph exceeds the chunk budget it is split at sentence
boundaries using an abbreviation-aware splitter that avoids breaking on
"Dr.", "vs.", etc.  A single sentence over budget is split between words.
"""

from __future__ import annotations

import re

import structlog

from chatapp.models.rag import DocumentChunk, LoadedDocument
from chatapp.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

# A token is a run of word characters or a single punctuation mark.
_TOKEN_RE = re.compile(r"\w+|[^\w\s]")

# Common abbreviations that should NOT trigger a sentence split.
# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Vol",
        "No",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "inc",
        "ltd",
        "co",
        "e.g",
        "i.e",
        "Fig",
    }
)

# Longest first, ties alphabetical, so overlapping entries such as "e.g" and
# "i.e" mask the same way on every interpreter run.
_ABBREVIATION_ORDER = tuple(sorted(_ABBREVIATIONS, key=lambda abbr: (-len(abbr), abbr)))


def count_tokens(text: str) -> int:
    """Return the approximate token count of *text* (words + punctuation)."""
    return len(_TOKEN_RE.findall(text))


class TextChunker:
    """Splits document text into token-bounded chunks.

    The chunking algorithm works in two phases:
    1. Split text into paragraphs (double-newline boundaries)
    2. Accumulate paragraphs into chunks until the token budget is reached,
       then start a new chunk, optionally seeded with the tail of the
       previous one (``overlap`` tokens)

    Parameters
    ----------
    chunk_size:
        Target maximum token count per chunk (default 200).
    overlap:
        Number of tokens of overlap between consecutive chunks (default 0).

    Raises
    ------
    ConfigurationError
        If ``chunk_size <= 0`` or ``overlap`` is outside ``[0, chunk_size)``.
    """

    def __init__(self, chunk_size: int = 200, overlap: int = 0) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(message=f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ConfigurationError(
                message=f"overlap must be in [0, {chunk_size}), got {overlap}"
            )
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk_document(self, document: LoadedDocument) -> list[DocumentChunk]:
        """Split every page of *document* into :class:`DocumentChunk` objects.

        Parameters
        ----------
        document:
            A loaded document with per-page text.

        Returns
        -------
        list[DocumentChunk]
            Chunks in page order with ordinals ``0..n-1``.  A document with
            no text returns an empty list.
        """
        chunks: list[DocumentChunk] = []
        for page in document.pages:
            for chunk_text in self.chunk(page.text):
                chunks.append(
                    DocumentChunk(
                        doc_key=document.key,
                        ordinal=len(chunks),
                        text=chunk_text,
                        page_number=page.page_number,
                        token_count=count_tokens(chunk_text),
                    )
                )

        logger.debug(
            "chunking_complete",
            document_key=document.key,
            pages=len(document.pages),
            num_chunks=len(chunks),
            avg_tokens=self._avg_tokens(chunks),
        )
        return chunks

    def chunk(self, text: str) -> list[str]:
        """Split *text* into chunk strings of at most ~``chunk_size`` tokens.

        Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        paragraphs = self._split_paragraphs(text)
        return self._accumulate_chunks(paragraphs)

    # ------------------------------------------------------------------
    # Paragraph / sentence splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        """Split *text* on double-newlines, discarding blanks."""
        parts = re.split(r"\n\s*\n", text)
        return [p.strip() for p in parts if p.strip()]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        """Split *text* at sentence boundaries while respecting abbreviations.

        Handles ``.``, ``!``, ``?`` followed by whitespace or end-of-string.
        Common abbreviations (Dr., Mr., etc.) do not trigger a split.

        Uses a masking approach instead of a variable-width lookbehind,
        which Python's ``re`` module does not support.
        """
        # Mask periods after known abbreviations with '\x00' (same length,
        # keeps indices aligned with the original text).
        masked = text
        for abbr in _ABBREVIATION_ORDER:
            masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

        sentences: list[str] = []
        last = 0
        for match in re.finditer(r"[.!?](?:\s|$)", masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        # Trailing text that didn't end with punctuation.
        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)

        return sentences if sentences else [text]

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate_chunks(self, paragraphs: list[str]) -> list[str]:
        """Greedily pack paragraphs into chunks respecting the token budget."""
        chunks: list[str] = []
        current_parts: list[tuple[str, int]] = []  # (text, token_count)
        current_tokens = 0

        for para in paragraphs:
            para_tokens = count_tokens(para)

            # A single paragraph over budget falls back to sentence splitting.
            if para_tokens > self._chunk_size:
                if current_parts:
                    chunks.append("\n\n".join(t for t, _ in current_parts))
                    current_parts = []
                    current_tokens = 0

                chunks.extend(self._chunk_long_paragraph(para))
                continue

            if current_tokens + para_tokens > self._chunk_size and current_parts:
                chunks.append("\n\n".join(t for t, _ in current_parts))
                current_parts, current_tokens = self._build_overlap(current_parts, para_tokens)

            current_parts.append((para, para_tokens))
            current_tokens += para_tokens

        if current_parts:
            chunks.append("\n\n".join(t for t, _ in current_parts))

        return chunks

    def _chunk_long_paragraph(self, paragraph: str) -> list[str]:
        """Split a paragraph that exceeds *chunk_size* at sentence boundaries."""
        chunks: list[str] = []
        current_parts: list[tuple[str, int]] = []
        current_tokens = 0

        for sentence in self._split_sentences(paragraph):
            sent_tokens = count_tokens(sentence)

            if sent_tokens > self._chunk_size:
                if current_parts:
                    chunks.append(" ".join(t for t, _ in current_parts))
                    current_parts = []
                    current_tokens = 0
                chunks.extend(self._chunk_long_sentence(sentence))
                continue

            if current_tokens + sent_tokens > self._chunk_size and current_parts:
                chunks.append(" ".join(t for t, _ in current_parts))
                current_parts, current_tokens = self._build_overlap(current_parts, sent_tokens)
            current_parts.append((sentence, sent_tokens))
            current_tokens += sent_tokens

        if current_parts:
            chunks.append(" ".join(t for t, _ in current_parts))

        return chunks

    def _chunk_long_sentence(self, sentence: str) -> list[str]:
        """Split an oversize sentence between words.

        A single word longer than the budget becomes a chunk of its own
        rather than being cut.
        """
        chunks: list[str] = []
        current_words: list[str] = []
        current_tokens = 0

        for word in sentence.split():
            word_tokens = count_tokens(word)
            if current_tokens + word_tokens > self._chunk_size and current_words:
                chunks.append(" ".join(current_words))
                current_words = []
                current_tokens = 0
            current_words.append(word)
            current_tokens += word_tokens

        if current_words:
            chunks.append(" ".join(current_words))

        return chunks

    def _build_overlap(
        self, parts: list[tuple[str, int]], next_tokens: int
    ) -> tuple[list[tuple[str, int]], int]:
        """Return tail parts whose combined tokens fit in *overlap*.

        The overlap is dropped when it would push the next chunk, together
        with the part about to be added, over the budget.
        """
        overlap_parts: list[tuple[str, int]] = []
        overlap_tokens = 0
        if self._overlap == 0:
            return overlap_parts, overlap_tokens

        for text, tok_count in reversed(parts):
            if overlap_tokens + tok_count > self._overlap:
                break
            overlap_parts.insert(0, (text, tok_count))
            overlap_tokens += tok_count

        if overlap_tokens + next_tokens > self._chunk_size:
            return [], 0
        return overlap_parts, overlap_tokens

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _avg_tokens(chunks: list[DocumentChunk]) -> int:
        if not chunks:
            return 0
        return sum(c.token_count for c in chunks) // len(chunks)

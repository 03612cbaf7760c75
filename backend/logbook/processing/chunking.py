"""
Paragraph Chunker: Overlapping, Boundary-Aware Text Segmentation
════════════════════════════════════════════════════════════════════

Splits extracted document text into chunks for embedding.

Algorithm
─────────
  1. Split the text into paragraphs at blank-line boundaries
     (``\\n`` + optional whitespace + ``\\n``).
  2. Accumulate paragraphs into a buffer, joined by a blank line.
  3. When the next paragraph would push the buffer past ``chunk_size``,
     emit the buffer as a chunk and seed the next buffer with the last
     ``overlap`` characters of the emitted chunk.
  4. A paragraph that alone exceeds ``chunk_size`` first flushes the
     pending buffer, then is split into sentences (``.``/``!``/``?``,
     whitespace, uppercase letter) which go through the same
     flush-and-overlap loop, joined by single spaces.
  5. Whatever is left in the buffer at the end is emitted.

Size guarantees
───────────────
  • A chunk is at most ``chunk_size + overlap`` characters long, unless a
    single paragraph or sentence is longer than that on its own.
  • An overlap seed is never emitted as a chunk by itself.
  • Empty or whitespace-only input yields no chunks.

Offsets
───────
  ``char_start`` / ``char_end`` are positions in the input string:
  the start of the first piece (or of the overlap seed) and the end of the
  last piece in the chunk. Chunk content joins pieces with normalized
  separators, so ``content`` is not always a verbatim slice of the input.

The chunker is pure and deterministic: same input, same chunks.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE    = 1000
DEFAULT_CHUNK_OVERLAP = 200

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR  = " "

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_SENTENCE_BREAK_RE  = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextChunk:
    """A single chunk ready for embedding."""
    content:    str
    index:      int    # 0-based, emission order
    char_start: int
    char_end:   int


@dataclass(frozen=True)
class _Span:
    """A stripped piece of the input together with its source offsets."""
    text:  str
    start: int
    end:   int


# ---------------------------------------------------------------------------
# Span helpers
# ---------------------------------------------------------------------------

def _trimmed_span(source: str, start: int, end: int, offset: int) -> _Span | None:
    raw = source[start:end]
    stripped = raw.strip()
    if not stripped:
        return None
    lead = len(raw) - len(raw.lstrip())
    begin = offset + start + lead
    return _Span(text=stripped, start=begin, end=begin + len(stripped))


def _split_spans(source: str, pattern: re.Pattern[str], offset: int = 0) -> list[_Span]:
    """Split ``source`` on ``pattern``, dropping empty pieces and keeping offsets."""
    spans: list[_Span] = []
    pos = 0
    for match in pattern.finditer(source):
        span = _trimmed_span(source, pos, match.start(), offset)
        if span is not None:
            spans.append(span)
        pos = match.end()
    tail = _trimmed_span(source, pos, len(source), offset)
    if tail is not None:
        spans.append(tail)
    return spans


# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------

class _ChunkBuffer:
    """
    Accumulates pieces and emits chunks.

    ``_fresh`` is False while the buffer holds nothing but an overlap seed;
    such a buffer is never flushed.
    """

    def __init__(self, chunk_size: int, overlap: int) -> None:
        self._size    = chunk_size
        self._overlap = overlap
        self._text    = ""
        self._start   = 0
        self._end     = 0
        self._fresh   = False
        self.chunks: list[TextChunk] = []

    def add(self, piece: _Span, separator: str) -> None:
        if self._fresh and len(self._text) + len(separator) + len(piece.text) > self._size:
            self.flush()

        if self._text and not self._fresh:
            self._clamp_seed(len(separator) + len(piece.text))

        if self._text:
            self._text += separator + piece.text
        else:
            self._text  = piece.text
            self._start = piece.start
        self._end   = piece.end
        self._fresh = True

    def flush(self) -> None:
        if not self._fresh:
            return

        content = self._text
        self.chunks.append(
            TextChunk(
                content=content,
                index=len(self.chunks),
                char_start=self._start,
                char_end=self._end,
            )
        )

        seed = content[-self._overlap:].lstrip() if self._overlap > 0 else ""
        self._text  = seed
        self._start = max(self._start, self._end - len(seed))
        self._fresh = False

    def _clamp_seed(self, incoming: int) -> None:
        # seed + incoming must fit in chunk_size + overlap
        room = self._size + self._overlap - incoming
        if room <= 0:
            self._text = ""
            return
        excess = len(self._text) - room
        if excess > 0:
            trimmed = self._text[excess:].lstrip()
            self._start += len(self._text) - len(trimmed)
            self._text = trimmed


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class ParagraphChunker:
    """
    Stateless paragraph/sentence chunker.

    Usage:
        chunker = ParagraphChunker(chunk_size=1000, overlap=200)
        chunks  = chunker.chunk(text)
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap:    int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self._chunk_size = chunk_size
        self._overlap    = overlap

    def chunk(self, text: str) -> list[TextChunk]:
        if not text or not text.strip():
            return []

        buffer = _ChunkBuffer(self._chunk_size, self._overlap)

        for paragraph in _split_spans(text, _PARAGRAPH_BREAK_RE):
            if len(paragraph.text) <= self._chunk_size:
                buffer.add(paragraph, PARAGRAPH_SEPARATOR)
                continue

            buffer.flush()
            sentences = _split_spans(paragraph.text, _SENTENCE_BREAK_RE, offset=paragraph.start)
            for position, sentence in enumerate(sentences):
                separator = PARAGRAPH_SEPARATOR if position == 0 else SENTENCE_SEPARATOR
                buffer.add(sentence, separator)

        buffer.flush()

        logger.debug(
            "Chunked | chars=%d chunks=%d size=%d overlap=%d",
            len(text), len(buffer.chunks), self._chunk_size, self._overlap,
        )
        return buffer.chunks


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap:    int = DEFAULT_CHUNK_OVERLAP,
) -> list[TextChunk]:
    """Convenience wrapper around ``ParagraphChunker``."""
    return ParagraphChunker(chunk_size=chunk_size, overlap=overlap).chunk(text)

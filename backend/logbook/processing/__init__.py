from logbook.processing.chunking import ParagraphChunker, TextChunk, chunk_text
from logbook.processing.transcript import (
    TranscriptMessage,
    TranscriptParseResult,
    parse_transcript,
    render_transcript,
)

__all__ = [
    "ParagraphChunker",
    "TextChunk",
    "chunk_text",
    "TranscriptMessage",
    "TranscriptParseResult",
    "parse_transcript",
    "render_transcript",
]

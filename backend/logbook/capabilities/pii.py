"""
PII scrubbing with an LLM.

The model replaces personal details with typed placeholders
(``[REDACTED_PHONE]``, ``[REDACTED_EMAIL]`` ...) while keeping names of
people acting in an official capacity. Long documents are split into
segments at paragraph boundaries and scrubbed one segment at a time.
"""

from __future__ import annotations

import logging

from langchain_core.language_models.chat_models import BaseChatModel

from logbook.capabilities.base import PIIScrubber
from logbook.capabilities.llm import complete

logger = logging.getLogger(__name__)

MAX_SEGMENT_CHARS = 15_000

PII_SYSTEM_PROMPT = """You are a PII redaction specialist for a residential building archive.

Replace personally identifiable information with typed placeholders, while preserving the context needed for building management.

REDACT these categories:
- National ID numbers: [REDACTED_ID_NUMBER]
- Phone numbers (landline or mobile): [REDACTED_PHONE]
- Email addresses: [REDACTED_EMAIL]
- Physical or postal addresses identifying a person's residence (not the building itself): [REDACTED_ADDRESS]
- Bank account numbers: [REDACTED_BANK_ACCOUNT]
- Financial amounts tied to specific individuals: [REDACTED_AMOUNT]

DO NOT REDACT:
- Names of people acting in an official capacity (trustees, chairperson, building manager, lawyers, contractors)
- The building's own name or address
- Company names
- Unit numbers
- Dates, meeting references, resolution numbers
- General financial figures (levies, budgets) not tied to one person's private finances

RULES:
- Return ONLY the redacted text, nothing else
- Preserve all formatting (paragraphs, bullet points, line breaks)
- If no PII is found, return the text unchanged
- When in doubt, redact"""


def split_segments(text: str, max_chars: int = MAX_SEGMENT_CHARS) -> list[str]:
    """
    Split ``text`` into consecutive segments of at most ``max_chars``,
    cutting at the last blank line (or newline) inside each window when
    there is one. Concatenating the segments gives back ``text``.
    """
    segments: list[str] = []
    pos = 0
    while len(text) - pos > max_chars:
        window_end = pos + max_chars
        cut = text.rfind("\n\n", pos, window_end)
        if cut > pos:
            cut += 2
        else:
            cut = text.rfind("\n", pos, window_end)
            cut = cut + 1 if cut > pos else window_end
        segments.append(text[pos:cut])
        pos = cut
    segments.append(text[pos:])
    return segments


class LLMPIIScrubber(PIIScrubber):

    def __init__(self, llm: BaseChatModel, max_segment_chars: int = MAX_SEGMENT_CHARS) -> None:
        self._llm          = llm
        self._max_segment  = max_segment_chars

    async def scrub(self, text: str) -> str:
        if not text.strip():
            return text

        segments = split_segments(text, self._max_segment)
        if len(segments) == 1:
            return await complete(
                self._llm,
                PII_SYSTEM_PROMPT,
                f"Redact PII from the following document text:\n\n{text}",
            )

        logger.info("PII scrub | segments=%d chars=%d", len(segments), len(text))
        scrubbed: list[str] = []
        for number, segment in enumerate(segments, start=1):
            if not segment.strip():
                scrubbed.append(segment)
                continue
            result = await complete(
                self._llm,
                PII_SYSTEM_PROMPT,
                f"Redact PII from the following document text "
                f"(segment {number} of {len(segments)}):\n\n{segment}",
            )
            # keep the newlines the segment was cut on
            boundary = segment[len(segment.rstrip("\n")):]
            scrubbed.append(result.strip("\n") + boundary)
        return "".join(scrubbed)

"""
Chat Transcript Normalizer
══════════════════════════

Parses exported chat logs (WhatsApp-style ``.txt`` exports) into structured
messages, and renders them back into one linear document that can be stored
as a Document's extracted text.

Recognized line formats, tried in this order:

    [2024/01/15, 14:30:22] Jane Doe: message        bracketed  YYYY/MM/DD
    15/01/2024, 14:30 - Jane Doe: message           dash       DD/MM/YYYY
    1/15/24, 2:30 PM - Jane Doe: message            dash       M/D/YY[YY] 12h

If the date/time captured by a format is not a real calendar datetime
(e.g. ``1/15/2024`` read as day 1 of month 15) the next format is tried.

Lines with one of those prefixes but no ``Sender:`` segment are system
events (group created, encryption notice, ...) and are discarded. Any other
non-empty line continues the previous message. Timestamps are kept as naive
datetimes in the exporting device's local time; exports carry no zone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Line patterns
# ---------------------------------------------------------------------------

_BRACKETED_RE = re.compile(
    r"^\[(?P<year>\d{4})/(?P<month>\d{1,2})/(?P<day>\d{1,2}),\s*"
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?\]\s*"
    r"(?P<sender>.+?):\s*(?P<content>.+)$"
)
_DMY_DASH_RE = re.compile(
    r"^(?P<day>\d{1,2})/(?P<month>\d{1,2})/(?P<year>\d{4}),\s*"
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?\s*-\s*"
    r"(?P<sender>.+?):\s*(?P<content>.+)$"
)
_MDY_DASH_RE = re.compile(
    r"^(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{2,4}),\s*"
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?(?:\s*(?P<meridiem>[APap][Mm]))?\s*-\s*"
    r"(?P<sender>.+?):\s*(?P<content>.+)$"
)

MESSAGE_PATTERNS: tuple[re.Pattern[str], ...] = (_BRACKETED_RE, _DMY_DASH_RE, _MDY_DASH_RE)

SYSTEM_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\[\d{4}/\d{1,2}/\d{1,2},\s*\d{1,2}:\d{2}(?::\d{2})?\]\s*.+$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4},\s*\d{1,2}:\d{2}(?::\d{2})?\s*-\s*.+$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4},\s*\d{1,2}:\d{2}(?::\d{2})?(?:\s*[APap][Mm])?\s*-\s*.+$"),
)

MEDIA_MARKERS: tuple[str, ...] = (
    "<media omitted>",
    "image omitted",
    "video omitted",
    "audio omitted",
    "sticker omitted",
    "document omitted",
    "gif omitted",
    "contact card omitted",
)

# Invisible direction marks some clients prepend to lines
_DIRECTION_MARKS = "\u200e\u200f\ufeff"

TIMESTAMP_FORMAT = "%Y/%m/%d, %H:%M:%S"
DATE_FORMAT      = "%Y/%m/%d"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class TranscriptMessage:
    timestamp: datetime
    sender:    str
    content:   str
    is_media:  bool = False


@dataclass
class TranscriptParseResult:
    messages:        list[TranscriptMessage] = field(default_factory=list)
    participants:    list[str] = field(default_factory=list)
    start_timestamp: datetime | None = None
    end_timestamp:   datetime | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

def _to_24h(hour: int, meridiem: str | None) -> int:
    if meridiem is None:
        return hour
    if not 1 <= hour <= 12:
        raise ValueError(f"hour {hour} is not valid on a 12-hour clock")
    is_pm = meridiem.lower() == "pm"
    if hour == 12:
        return 12 if is_pm else 0
    return hour + 12 if is_pm else hour


def _timestamp_from(match: re.Match[str]) -> datetime:
    """Build a datetime from a message match; raises ValueError if it is not a real date."""
    parts = match.groupdict()
    year = parts["year"]
    if len(year) == 2:
        year = f"20{year}"
    elif len(year) != 4:
        raise ValueError(f"unsupported year {year!r}")

    return datetime(
        int(year),
        int(parts["month"]),
        int(parts["day"]),
        _to_24h(int(parts["hour"]), parts.get("meridiem")),
        int(parts["minute"]),
        int(parts["second"] or 0),
    )


def _is_media(content: str) -> bool:
    lowered = content.lower()
    return any(marker in lowered for marker in MEDIA_MARKERS)


def _match_message(line: str) -> TranscriptMessage | None:
    for pattern in MESSAGE_PATTERNS:
        match = pattern.match(line)
        if match is None:
            continue
        try:
            timestamp = _timestamp_from(match)
        except ValueError:
            continue
        content = match.group("content").strip()
        return TranscriptMessage(
            timestamp=timestamp,
            sender=match.group("sender").strip(),
            content=content,
            is_media=_is_media(content),
        )
    return None


def _is_system_line(line: str) -> bool:
    return any(pattern.match(line) for pattern in SYSTEM_PATTERNS)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_transcript(raw: str) -> TranscriptParseResult:
    """Parse a chat export into messages, participants and the covered period."""
    messages: list[TranscriptMessage] = []
    participants: set[str] = set()
    current: TranscriptMessage | None = None
    dropped = 0

    for line in raw.splitlines():
        trimmed = line.strip().lstrip(_DIRECTION_MARKS).strip()
        if not trimmed:
            continue

        message = _match_message(trimmed)
        if message is not None:
            messages.append(message)
            participants.add(message.sender)
            current = message
            continue

        if _is_system_line(trimmed):
            continue

        if current is not None:
            current.content += "\n" + trimmed
        else:
            dropped += 1

    if dropped:
        logger.debug("Transcript parse | dropped %d leading line(s) with no message", dropped)

    return TranscriptParseResult(
        messages=messages,
        participants=sorted(participants),
        start_timestamp=messages[0].timestamp if messages else None,
        end_timestamp=messages[-1].timestamp if messages else None,
    )


def render_transcript(result: TranscriptParseResult) -> str:
    """Serialize a parse result into a single readable document."""
    start = result.start_timestamp.strftime(DATE_FORMAT) if result.start_timestamp else "unknown"
    end   = result.end_timestamp.strftime(DATE_FORMAT) if result.end_timestamp else "unknown"

    lines = [
        "Chat Export",
        f"Participants: {', '.join(result.participants)}",
        f"Period: {start} - {end}",
        f"Messages: {result.message_count}",
        "",
        "---",
        "",
    ]
    for message in result.messages:
        if message.is_media:
            continue
        lines.append(
            f"[{message.timestamp.strftime(TIMESTAMP_FORMAT)}] {message.sender}: {message.content}"
        )
    return "\n".join(lines)

"""Structural repair of raw ICS text before parsing.

Feeds are untrusted third-party text. This module fixes the breakages seen
in the wild (byte-order marks, raw newlines inside property values,
truncated transfers) without touching structurally valid content.
"""

from __future__ import annotations

import logging
import re

from .feed_exceptions import TextNotCalendarError

logger = logging.getLogger(__name__)

BYTE_ORDER_MARK = "\ufeff"
CALENDAR_BEGIN = "BEGIN:VCALENDAR"
CALENDAR_END = "END:VCALENDAR"

# Escaped newline as it would appear inside a TEXT property value
ESCAPED_NEWLINE = "\\n"

_LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")
_PROPERTY_MARKER_RE = re.compile(r"[;:]")
_BEGIN_RE = re.compile(r"BEGIN:VCALENDAR", re.IGNORECASE)
_END_AT_TAIL_RE = re.compile(r"END:VCALENDAR\s*$", re.IGNORECASE | re.MULTILINE)

PREVIEW_LENGTH = 80


def fix_broken_line_folding(ics_text: str) -> str:
    """Merge stray value lines into the previous line.

    Continuation lines must start with a space or tab. Some servers emit raw
    line breaks inside values (commonly LOCATION), producing lines with no
    ``;`` or ``:``. Such a line is appended to the previous one, joined with
    an escaped newline. Lines are re-joined with CRLF.
    """
    raw_lines = _LINE_BREAK_RE.split(ics_text)
    if raw_lines and raw_lines[-1] == "":
        raw_lines.pop()

    lines: list[str] = []
    repaired = 0
    for line in raw_lines:
        stripped = line.lstrip()
        is_continuation = line[:1] in (" ", "\t")
        looks_like_property = _PROPERTY_MARKER_RE.search(stripped) is not None
        if stripped and not is_continuation and not looks_like_property and lines:
            lines[-1] += ESCAPED_NEWLINE + stripped
            repaired += 1
        else:
            lines.append(line)

    if repaired:
        logger.debug("Repaired %d broken continuation line(s)", repaired)
    return "\r\n".join(lines)


def has_calendar_begin(text: str) -> bool:
    return _BEGIN_RE.search(text) is not None


def normalize_ics_text(raw_text: str) -> str:
    """Strip BOM, fix folding, trim trailing whitespace, ensure END:VCALENDAR.

    The terminator is only appended to text that has a calendar-begin
    marker; anything else is returned as-is for the caller to reject.
    """
    text = raw_text
    if text.startswith(BYTE_ORDER_MARK):
        text = text[len(BYTE_ORDER_MARK) :]

    text = fix_broken_line_folding(text)
    text = text.rstrip()

    if has_calendar_begin(text) and not _END_AT_TAIL_RE.search(text):
        logger.info("ICS text is missing %s (truncated transfer?); appending it", CALENDAR_END)
        text = text + "\r\n" + CALENDAR_END

    return text


def text_preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    """Single-line preview of a body for error messages."""
    return re.sub(r"\s+", " ", text[: limit * 3]).strip()[:limit]


def ensure_calendar_text(raw_text: str) -> str:
    """Normalize ``raw_text`` and reject it if it is not a calendar at all.

    Raises:
        TextNotCalendarError: If the normalized body lacks BEGIN:VCALENDAR
    """
    normalized = normalize_ics_text(raw_text)
    if not has_calendar_begin(normalized):
        preview = text_preview(normalized)
        hint = " Server may have returned HTML." if preview.startswith("<") else ""
        raise TextNotCalendarError(
            f"Response is not a calendar (expected {CALENDAR_BEGIN}).{hint}"
            f" Preview: {preview or '(empty)'}"
        )
    return normalized

"""Exception hierarchy for calendar feed ingestion.

Feed-scoped errors abort one feed's refresh cycle and are recorded on that
feed's state; they never abort other feeds or the merge. Per-event errors
are local to the parser and never escape it.
"""

from __future__ import annotations

from enum import Enum


class FeedErrorKind(str, Enum):
    """Kinds of feed-scoped failure."""

    TEXT_NOT_CALENDAR = "text_not_calendar"
    PARSE_FAILURE = "parse_failure"
    NETWORK_FAILURE = "network_failure"


class FeedError(Exception):
    """Base exception for failures that invalidate a whole feed refresh.

    Subclasses set ``kind`` so callers can record the failure without
    inspecting the exception type.
    """

    kind: FeedErrorKind = FeedErrorKind.PARSE_FAILURE


class TextNotCalendarError(FeedError):
    """The response body is not a calendar.

    Raised when:
    - The normalized text lacks BEGIN:VCALENDAR (typically an HTML error page)
    - The body is empty
    """

    kind = FeedErrorKind.TEXT_NOT_CALENDAR


class ParseFailureError(FeedError):
    """The body claims to be a calendar but cannot be parsed as one."""

    kind = FeedErrorKind.PARSE_FAILURE


class NetworkFailureError(FeedError):
    """Retrieval failed or the server answered with a non-success status."""

    kind = FeedErrorKind.NETWORK_FAILURE

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedEventError(Exception):
    """A single VEVENT could not be turned into events.

    Raised and caught inside the parser; the record is skipped with a
    warning and the rest of the feed still contributes events.
    """


class FeedConfigValidationError(ValueError):
    """A feed configuration record failed validation at the boundary."""

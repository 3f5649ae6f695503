"""iCalendar parser producing concrete, feed-tagged events - hallcal."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional

from icalendar import Calendar

from .feed_exceptions import MalformedEventError, ParseFailureError
from .feed_models import NO_TITLE_PLACEHOLDER, CalendarEvent
from .ics_normalizer import ensure_calendar_text, text_preview
from .rrule_expander import (
    Occurrence,
    RecurrenceWindow,
    RRuleExpander,
    epoch_millis,
    event_duration,
    frame_start_of,
    is_date_value,
    to_instant,
)
from .timezone_utils import get_display_timezone, now_utc

logger = logging.getLogger(__name__)


class FeedICSParser:
    """Parses one feed's normalized ICS text into a flat list of events.

    Per-event problems are logged and skipped; only a document that does
    not parse as a calendar at all fails the whole feed.
    """

    def __init__(
        self,
        window: Optional[RecurrenceWindow] = None,
        local_tz: Optional[datetime.tzinfo] = None,
        time_provider: Any = now_utc,
    ):
        """Initialize parser.

        Args:
            window: Recurrence expansion window and caps
            local_tz: Zone for bare dates and floating times (display timezone if None)
            time_provider: Callable returning the current UTC time
        """
        self._local_tz = local_tz
        self.expander = RRuleExpander(window, local_tz)
        self.time_provider = time_provider

    @property
    def local_tz(self) -> datetime.tzinfo:
        return self._local_tz or get_display_timezone()

    def parse(
        self, normalized_text: str, feed_id: str, feed_name: str, color: str
    ) -> list[CalendarEvent]:
        """Parse normalized ICS text into events for one feed.

        Raises:
            ParseFailureError: If the text does not parse as a calendar
        """
        calendar = self._parse_calendar(normalized_text)
        now = self.time_provider()

        events: list[CalendarEvent] = []
        skipped = 0
        for component in calendar.walk("VEVENT"):
            # Overrides of single occurrences are not applied to their series
            if component.get("RECURRENCE-ID") is not None:
                continue
            try:
                events.extend(self._parse_event(component, now, feed_id, feed_name, color))
            except Exception as e:
                skipped += 1
                logger.warning(
                    "Skipped malformed VEVENT %r in feed %r: %s",
                    str(component.get("UID", "")),
                    feed_name,
                    e,
                )

        logger.debug(
            "Parsed %d events from feed %r (%d malformed records skipped)",
            len(events),
            feed_name,
            skipped,
        )
        return events

    def _parse_calendar(self, normalized_text: str) -> Calendar:
        try:
            calendar = Calendar.from_ical(normalized_text)
        except Exception as e:
            logger.error(
                "ICS parse failed: %s. Preview: %s", e, text_preview(normalized_text, 300)
            )
            raise ParseFailureError(f"Calendar parse failed: {e}") from e

        # from_ical returns a list when the text holds several top-level components
        if isinstance(calendar, list):
            calendar = next((c for c in calendar if c.name == "VCALENDAR"), None)
        if calendar is None or getattr(calendar, "name", None) != "VCALENDAR":
            raise ParseFailureError("Calendar parse failed: no VCALENDAR component")
        return calendar

    def _parse_event(
        self,
        component: Any,
        now: datetime.datetime,
        feed_id: str,
        feed_name: str,
        color: str,
    ) -> list[CalendarEvent]:
        # Unparsable values surface as ValueError on access, handled by the caller
        if component.get("DTSTART") is None:
            logger.debug("Skipping VEVENT without DTSTART in feed %r", feed_name)
            return []
        if self.expander.is_recurring(component):
            return [
                self._build_event(component, occurrence, feed_id, feed_name, color, True)
                for occurrence in self.expander.expand(component, now)
            ]
        return [
            self._build_event(
                component, self._single_occurrence(component), feed_id, feed_name, color, False
            )
        ]

    def _single_occurrence(self, component: Any) -> Occurrence:
        local_tz = self.local_tz
        start_value = component["DTSTART"].dt
        if not isinstance(start_value, datetime.date):
            raise MalformedEventError(f"DTSTART is not a date or date-time: {start_value!r}")

        frame_start = frame_start_of(start_value)
        end_frame = frame_start + event_duration(component, start_value, local_tz)
        return Occurrence(
            start=to_instant(frame_start, local_tz),
            end=to_instant(end_frame, local_tz),
            all_day=is_date_value(start_value),
        )

    def _build_event(
        self,
        component: Any,
        occurrence: Occurrence,
        feed_id: str,
        feed_name: str,
        color: str,
        recurring: bool,
    ) -> CalendarEvent:
        title = str(component.get("SUMMARY") or "").strip() or NO_TITLE_PLACEHOLDER
        uid = str(component.get("UID") or "").strip()
        if not uid:
            uid = f"{epoch_millis(occurrence.start)}-{title}"

        event_id = f"{feed_id}-{uid}"
        if recurring:
            event_id = f"{event_id}-{occurrence.marker}"

        location = str(component.get("LOCATION") or "").strip() or None

        return CalendarEvent(
            id=event_id,
            title=title,
            start=occurrence.start,
            end=occurrence.end,
            all_day=occurrence.all_day,
            feed_id=feed_id,
            feed_name=feed_name,
            color=color,
            location=location,
        )


def parse_ics(
    raw_text: str,
    feed_id: str,
    feed_name: str,
    color: str,
    parser: Optional[FeedICSParser] = None,
) -> list[CalendarEvent]:
    """Normalize, validate and parse raw feed text in one call.

    Raises:
        TextNotCalendarError: If the body is not a calendar
        ParseFailureError: If the calendar cannot be parsed
    """
    normalized = ensure_calendar_text(raw_text)
    return (parser or FeedICSParser()).parse(normalized, feed_id, feed_name, color)

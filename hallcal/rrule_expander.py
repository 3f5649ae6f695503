"""RRULE expansion and event time resolution for hallcal.

Recurring VEVENTs are expanded into concrete occurrences inside a bounded
window around "now". Rules are evaluated in the event's own frame (its TZID
zone, or naive local wall time for floating times and bare dates) so that
occurrences keep their wall-clock time across DST changes, and are only
then resolved to absolute instants.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Optional

from dateutil.rrule import rrule, rruleset, rrulestr

from .feed_exceptions import MalformedEventError
from .timezone_utils import get_display_timezone

logger = logging.getLogger(__name__)

DEFAULT_DAYS_PAST = 7
DEFAULT_DAYS_FUTURE = 90
DEFAULT_MAX_OCCURRENCES = 500
# Upper bound on occurrences walked per rule, skipped ones included
DEFAULT_MAX_ITERATIONS = 100_000

_UNTIL_RE = re.compile(r"(?:^|;)UNTIL=[^;]*", re.IGNORECASE)


@dataclass(frozen=True)
class RecurrenceWindow:
    """Expansion window and runaway-rule guards."""

    days_past: int = DEFAULT_DAYS_PAST
    days_future: int = DEFAULT_DAYS_FUTURE
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    @classmethod
    def from_settings(cls, settings: Any) -> RecurrenceWindow:
        return cls(
            days_past=int(getattr(settings, "recurrence_days_past", DEFAULT_DAYS_PAST)),
            days_future=int(getattr(settings, "recurrence_days_future", DEFAULT_DAYS_FUTURE)),
            max_occurrences=int(getattr(settings, "max_occurrences", DEFAULT_MAX_OCCURRENCES)),
        )

    def bounds(self, now: datetime.datetime) -> tuple[datetime.datetime, datetime.datetime]:
        """Return the [start, end] instants of the window around ``now``."""
        return (
            now - datetime.timedelta(days=self.days_past),
            now + datetime.timedelta(days=self.days_future),
        )


@dataclass(frozen=True)
class Occurrence:
    """One resolved occurrence of a recurring event."""

    start: datetime.datetime
    end: datetime.datetime
    all_day: bool

    @property
    def marker(self) -> str:
        """Occurrence discriminator used in event ids (start as epoch millis)."""
        return str(epoch_millis(self.start))


def epoch_millis(dt: datetime.datetime) -> int:
    return int(dt.timestamp() * 1000)


def is_date_value(value: Any) -> bool:
    """True for a bare date (all-day), False for a date-time."""
    return isinstance(value, datetime.date) and not isinstance(value, datetime.datetime)


def to_frame(
    value: datetime.date,
    frame_start: datetime.datetime,
    local_tz: datetime.tzinfo,
    end_of_day: bool = False,
) -> datetime.datetime:
    """Coerce a date/date-time into the same frame as ``frame_start``.

    The frame is either aware (the event's zone) or naive local wall time.
    Bare dates take the frame start's time of day, or the last moment of the
    day when ``end_of_day`` is set (inclusive UNTIL semantics).
    """
    if is_date_value(value):
        clock = datetime.time.max if end_of_day else frame_start.time()
        value = datetime.datetime.combine(value, clock)
        if frame_start.tzinfo is not None:
            return value.replace(tzinfo=frame_start.tzinfo)
        return value

    if not isinstance(value, datetime.datetime):
        raise MalformedEventError(f"not a date or date-time: {value!r}")
    if frame_start.tzinfo is None:
        if value.tzinfo is None:
            return value
        return value.astimezone(local_tz).replace(tzinfo=None)

    if value.tzinfo is None:
        return value.replace(tzinfo=frame_start.tzinfo)
    return value.astimezone(frame_start.tzinfo)


def frame_start_of(value: datetime.date) -> datetime.datetime:
    """Start of an event in its own frame (bare dates become naive midnight)."""
    if is_date_value(value):
        return datetime.datetime.combine(value, datetime.time())
    if not isinstance(value, datetime.datetime):
        raise MalformedEventError(f"not a date or date-time: {value!r}")
    return value


def to_instant(value: datetime.datetime, local_tz: datetime.tzinfo) -> datetime.datetime:
    """Resolve a framed datetime to a UTC instant (naive = local wall time)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=local_tz)
    return value.astimezone(datetime.timezone.utc)


def event_duration(
    component: Any, start_value: datetime.date, local_tz: datetime.tzinfo
) -> datetime.timedelta:
    """Wall-clock duration of a VEVENT.

    DTEND - DTSTART when DTEND exists, else DURATION, else one day for
    all-day events and zero for timed events. May be negative.
    """
    dtend = component.get("DTEND")
    if dtend is not None and getattr(dtend, "dt", None) is not None:
        start = frame_start_of(start_value)
        end = to_frame(dtend.dt, start, local_tz)
        return end - start

    duration = component.get("DURATION")
    if duration is not None and isinstance(getattr(duration, "dt", None), datetime.timedelta):
        return duration.dt

    if is_date_value(start_value):
        return datetime.timedelta(days=1)
    return datetime.timedelta(0)


def _date_entries(component: Any, name: str) -> Iterator[Any]:
    props = component.get(name)
    if props is None:
        return
    if not isinstance(props, list):
        props = [props]
    for prop in props:
        for entry in getattr(prop, "dts", []):
            yield getattr(entry, "dt", None)


def _collect_dates(component: Any, name: str) -> list[datetime.date]:
    """Flatten RDATE/EXDATE properties (single or repeated, comma lists)."""
    values: list[datetime.date] = []
    for dt in _date_entries(component, name):
        # RDATE may carry PERIODs as (start, end|duration) tuples
        if isinstance(dt, tuple):
            dt = dt[0]
        if isinstance(dt, datetime.date):
            values.append(dt)
    return values


def _period_spans(
    component: Any, frame_start: datetime.datetime, local_tz: datetime.tzinfo
) -> dict[datetime.datetime, datetime.timedelta]:
    """Own durations of RDATE PERIOD values, keyed by their framed start."""
    spans: dict[datetime.datetime, datetime.timedelta] = {}
    for dt in _date_entries(component, "RDATE"):
        if not isinstance(dt, tuple) or len(dt) != 2:
            continue
        start = to_frame(dt[0], frame_start, local_tz)
        end = dt[1]
        if isinstance(end, datetime.timedelta):
            spans[start] = end
        elif isinstance(end, datetime.date):
            spans[start] = to_frame(end, start, local_tz) - start
    return spans


class RRuleExpander:
    """Expands recurring VEVENT components into bounded occurrences."""

    def __init__(
        self,
        window: Optional[RecurrenceWindow] = None,
        local_tz: Optional[datetime.tzinfo] = None,
    ):
        self.window = window or RecurrenceWindow()
        self._local_tz = local_tz

    @property
    def local_tz(self) -> datetime.tzinfo:
        return self._local_tz or get_display_timezone()

    @staticmethod
    def is_recurring(component: Any) -> bool:
        return component.get("RRULE") is not None or component.get("RDATE") is not None

    def expand(self, component: Any, now: datetime.datetime) -> Iterator[Occurrence]:
        """Yield occurrences of ``component`` inside the window, chronologically.

        Occurrences before the window start are skipped without counting
        against ``max_occurrences``; the walk stops at the first occurrence
        past the window end.

        Raises:
            MalformedEventError: If DTSTART or the recurrence rule is unusable
        """
        dtstart = component.get("DTSTART")
        if dtstart is None or getattr(dtstart, "dt", None) is None:
            raise MalformedEventError("recurring event has no DTSTART")

        start_value = dtstart.dt
        all_day = is_date_value(start_value)
        frame_start = frame_start_of(start_value)
        duration = event_duration(component, start_value, self.local_tz)
        rule_set = self._build_rule_set(component, frame_start)

        local_tz = self.local_tz
        spans = _period_spans(component, frame_start, local_tz)
        window_start, window_end = self.window.bounds(now)

        emitted = 0
        walked = 0
        for occurrence in rule_set:
            walked += 1
            if walked > self.window.max_iterations:
                logger.warning(
                    "Recurrence walk for %r stopped after %d iterations",
                    str(component.get("UID", "")),
                    self.window.max_iterations,
                )
                break

            start = to_instant(occurrence, local_tz)
            if start > window_end:
                break
            if start < window_start:
                continue

            yield Occurrence(
                start=start,
                end=to_instant(occurrence + spans.get(occurrence, duration), local_tz),
                all_day=all_day,
            )
            emitted += 1
            if emitted >= self.window.max_occurrences:
                logger.debug(
                    "Recurrence for %r capped at %d occurrences",
                    str(component.get("UID", "")),
                    self.window.max_occurrences,
                )
                break

    def _build_rule_set(self, component: Any, frame_start: datetime.datetime) -> rruleset:
        local_tz = self.local_tz
        rule_set = rruleset()

        rrule_props = component.get("RRULE")
        if rrule_props is not None:
            if not isinstance(rrule_props, list):
                rrule_props = [rrule_props]
            for prop in rrule_props:
                rule_set.rrule(self._build_rule(prop, frame_start))

        # DTSTART is always the first instance
        rule_set.rdate(frame_start)
        for value in _collect_dates(component, "RDATE"):
            rule_set.rdate(to_frame(value, frame_start, local_tz))
        for value in _collect_dates(component, "EXDATE"):
            rule_set.exdate(to_frame(value, frame_start, local_tz))

        return rule_set

    def _build_rule(self, prop: Any, frame_start: datetime.datetime) -> rrule:
        """Build a dateutil rule with UNTIL coerced to the DTSTART frame.

        dateutil rejects an UNTIL whose awareness differs from DTSTART, which
        real feeds produce routinely (e.g. floating DTSTART with UTC UNTIL).
        """
        rule_text = prop.to_ical().decode("utf-8") if hasattr(prop, "to_ical") else str(prop)
        until_values = prop.get("UNTIL") if hasattr(prop, "get") else None
        rule_text = _UNTIL_RE.sub("", rule_text).lstrip(";")

        try:
            rule = rrulestr(rule_text, dtstart=frame_start)
            if until_values:
                until = until_values[0] if isinstance(until_values, list) else until_values
                rule = rule.replace(
                    until=to_frame(until, frame_start, self.local_tz, end_of_day=True)
                )
        except (ValueError, TypeError) as e:
            raise MalformedEventError(f"unusable RRULE {rule_text!r}: {e}") from e

        if not isinstance(rule, rrule):
            raise MalformedEventError(f"unexpected RRULE shape {rule_text!r}")
        return rule

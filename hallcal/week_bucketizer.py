"""Week window filtering and day bucketing for the display - hallcal.

A week window is always five consecutive local calendar days starting at
``week_start`` (by convention a Monday). The date keys for a window are
computed once and shared by the range filter and the grouping step so both
agree on the same boundaries.

Grouping uses the local date of an event's *start* only. A multi-day event
that began before the window passes the range filter but lands in no bucket;
it is still present in the flat filtered list.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Sequence
from typing import Optional

from .feed_models import CalendarEvent
from .timezone_utils import get_display_timezone, local_midnight, to_local_date_key

logger = logging.getLogger(__name__)

WEEKDAY_COUNT = 5


def get_week_start(day: datetime.date) -> datetime.date:
    """Return the Monday of the week containing ``day``.

    Sunday belongs to the week that started six days earlier.
    """
    if isinstance(day, datetime.datetime):
        day = day.date()
    return day - datetime.timedelta(days=day.weekday())


def shift_week(week_start: datetime.date, weeks: int) -> datetime.date:
    return week_start + datetime.timedelta(weeks=weeks)


def get_week_date_keys(week_start: datetime.date) -> list[str]:
    """The five ordered local date keys ("YYYY-MM-DD") of the window."""
    return [
        (week_start + datetime.timedelta(days=offset)).isoformat()
        for offset in range(WEEKDAY_COUNT)
    ]


def get_window_bounds(
    week_start: datetime.date, tz: Optional[datetime.tzinfo] = None
) -> tuple[datetime.datetime, datetime.datetime]:
    """Return (local midnight of week_start, 23:59:59.999 local of the fifth day)."""
    zone = tz or get_display_timezone()
    start = local_midnight(week_start, zone)
    last_day = week_start + datetime.timedelta(days=WEEKDAY_COUNT - 1)
    end = local_midnight(last_day, zone) + datetime.timedelta(days=1, milliseconds=-1)
    return start, end


def filter_events_for_week(
    events: Iterable[CalendarEvent],
    week_start: datetime.date,
    tz: Optional[datetime.tzinfo] = None,
) -> list[CalendarEvent]:
    """Keep events overlapping the window (strict on both ends)."""
    window_start, window_end = get_window_bounds(week_start, tz)
    return [event for event in events if event.end > window_start and event.start < window_end]


def group_events_by_day(
    events: Iterable[CalendarEvent],
    date_keys: Sequence[str],
    tz: Optional[datetime.tzinfo] = None,
) -> dict[str, list[CalendarEvent]]:
    """Bucket events by the local date of their start.

    Every requested key is present (possibly empty) and in the given order.
    Events starting on a date outside ``date_keys`` are dropped.
    """
    zone = tz or get_display_timezone()
    buckets: dict[str, list[CalendarEvent]] = {key: [] for key in date_keys}
    dropped = 0
    for event in events:
        bucket = buckets.get(to_local_date_key(event.start, zone))
        if bucket is None:
            dropped += 1
            continue
        bucket.append(event)

    for bucket in buckets.values():
        # list.sort is stable, so equal starts keep encounter order
        bucket.sort(key=lambda event: event.start)

    if dropped:
        logger.debug("%d in-range event(s) start outside the bucketed days", dropped)
    return buckets


def filter_and_group(
    events: Iterable[CalendarEvent],
    week_start: datetime.date,
    date_keys: Optional[Sequence[str]] = None,
    tz: Optional[datetime.tzinfo] = None,
) -> tuple[list[CalendarEvent], dict[str, list[CalendarEvent]]]:
    """Filter events to the week window and group them into day buckets.

    Args:
        events: Merged events from all feeds
        week_start: First local date of the window
        date_keys: Precomputed keys for the window (computed if None)
        tz: Display timezone (resolved if None)

    Returns:
        Tuple of (filtered flat list, ordered dict of date key -> events)
    """
    zone = tz or get_display_timezone()
    if date_keys is None:
        date_keys = get_week_date_keys(week_start)
    filtered = filter_events_for_week(events, week_start, zone)
    return filtered, group_events_by_day(filtered, date_keys, zone)

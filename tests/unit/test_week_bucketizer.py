"""Unit tests for hallcal.week_bucketizer."""

import datetime

import pytest

from hallcal.week_bucketizer import (
    filter_and_group,
    filter_events_for_week,
    get_week_date_keys,
    get_week_start,
    get_window_bounds,
    group_events_by_day,
    shift_week,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

MONDAY = datetime.date(2025, 3, 3)
KEYS = ["2025-03-03", "2025-03-04", "2025-03-05", "2025-03-06", "2025-03-07"]


@pytest.fixture
def local(ny_tz):
    """Build an aware datetime in New York time."""

    def _local(day: int, hour: int = 0, minute: int = 0, month: int = 3) -> datetime.datetime:
        return datetime.datetime(2025, month, day, hour, minute, tzinfo=ny_tz)

    return _local


class TestWeekArithmetic:
    """Tests for week start, shifting and date keys."""

    @pytest.mark.parametrize(
        "day, expected",
        [
            (datetime.date(2025, 3, 3), MONDAY),
            (datetime.date(2025, 3, 5), MONDAY),
            (datetime.date(2025, 3, 8), MONDAY),
            (datetime.date(2025, 3, 9), MONDAY),
            (datetime.date(2025, 3, 10), datetime.date(2025, 3, 10)),
        ],
    )
    def test_get_week_start_when_any_weekday_then_monday_of_that_week(self, day, expected) -> None:
        """Test Saturday and Sunday map back to the preceding Monday."""
        assert get_week_start(day) == expected

    def test_get_week_start_when_datetime_then_uses_its_date(self) -> None:
        """Test datetimes are accepted."""
        assert get_week_start(datetime.datetime(2025, 3, 9, 23, 30)) == MONDAY

    def test_shift_week_when_negative_then_earlier_week(self) -> None:
        """Test week navigation in both directions."""
        assert shift_week(MONDAY, 1) == datetime.date(2025, 3, 10)
        assert shift_week(MONDAY, -1) == datetime.date(2025, 2, 24)

    def test_get_week_date_keys_when_monday_then_five_weekdays(self) -> None:
        """Test keys are five consecutive ISO dates."""
        assert get_week_date_keys(MONDAY) == KEYS

    def test_get_week_date_keys_when_month_boundary_then_rolls_over(self) -> None:
        """Test keys cross month ends correctly."""
        assert get_week_date_keys(datetime.date(2025, 3, 31)) == [
            "2025-03-31",
            "2025-04-01",
            "2025-04-02",
            "2025-04-03",
            "2025-04-04",
        ]

    def test_get_window_bounds_when_called_then_monday_midnight_to_friday_end(
        self, ny_tz, local
    ) -> None:
        """Test the window ends at 23:59:59.999 local on the fifth day."""
        start, end = get_window_bounds(MONDAY, ny_tz)

        assert start == local(3)
        assert end == local(7, 23, 59) + datetime.timedelta(seconds=59, milliseconds=999)

    def test_get_window_bounds_when_dst_inside_window_then_local_midnights(self, ny_tz, local) -> None:
        """Test bounds follow local wall time when the week spans a DST change."""
        start, end = get_window_bounds(datetime.date(2025, 3, 10), ny_tz)

        assert start == local(10)
        assert end.astimezone(ny_tz).hour == 23
        assert end.astimezone(ny_tz).date() == datetime.date(2025, 3, 14)


class TestFilterEventsForWeek:
    """Tests for the strict overlap filter."""

    def test_filter_when_zero_duration_at_window_start_then_excluded(
        self, make_event, ny_tz, local
    ) -> None:
        """Test end > window start is strict."""
        event = make_event("zero", local(3), end=local(3))

        assert filter_events_for_week([event], MONDAY, ny_tz) == []

    def test_filter_when_event_ends_at_window_start_then_excluded(
        self, make_event, ny_tz, local
    ) -> None:
        """Test an event ending exactly at Monday midnight does not overlap."""
        event = make_event("sunday", local(2, 23), end=local(3))

        assert filter_events_for_week([event], MONDAY, ny_tz) == []

    def test_filter_when_event_crosses_into_window_then_included(
        self, make_event, ny_tz, local
    ) -> None:
        """Test Sunday 23:00 to Monday 01:00 overlaps the window."""
        event = make_event("late", local(2, 23), end=local(3, 1))

        assert filter_events_for_week([event], MONDAY, ny_tz) == [event]

    def test_filter_when_friday_late_then_included_and_saturday_excluded(
        self, make_event, ny_tz, local
    ) -> None:
        """Test the window's far edge."""
        friday = make_event("friday", local(7, 23, 30))
        saturday = make_event("saturday", local(8))

        assert filter_events_for_week([friday, saturday], MONDAY, ny_tz) == [friday]

    def test_filter_when_all_day_event_then_by_local_midnight(self, make_event, ny_tz, local) -> None:
        """Test an all-day Wednesday event is in range."""
        event = make_event("holiday", local(5), end=local(6), all_day=True)

        assert filter_events_for_week([event], MONDAY, ny_tz) == [event]


class TestGroupEventsByDay:
    """Tests for day bucketing."""

    def test_group_when_no_events_then_all_keys_present_and_empty(self, ny_tz) -> None:
        """Test every key appears, in order, even with no events."""
        buckets = group_events_by_day([], KEYS, ny_tz)

        assert list(buckets) == KEYS
        assert all(bucket == [] for bucket in buckets.values())

    def test_group_when_events_then_bucketed_by_local_start_date(
        self, make_event, ny_tz, local
    ) -> None:
        """Test buckets use the display zone, not UTC."""
        # 21:00 New York on Tuesday is already Wednesday in UTC
        evening = make_event("evening", local(4, 21))

        buckets = group_events_by_day([evening], KEYS, ny_tz)

        assert buckets["2025-03-04"] == [evening]
        assert buckets["2025-03-05"] == []

    def test_group_when_equal_starts_then_encounter_order_kept(
        self, make_event, ny_tz, local
    ) -> None:
        """Test sorting is stable for identical start times."""
        first = make_event("first", local(4, 9))
        second = make_event("second", local(4, 9))
        early = make_event("early", local(4, 8))

        buckets = group_events_by_day([first, second, early], KEYS, ny_tz)

        assert [e.id for e in buckets["2025-03-04"]] == ["early", "first", "second"]

    def test_group_when_start_outside_keys_then_dropped(self, make_event, ny_tz, local) -> None:
        """Test events starting on a non-key date land in no bucket."""
        saturday = make_event("saturday", local(8, 10))

        buckets = group_events_by_day([saturday], KEYS, ny_tz)

        assert sum(len(b) for b in buckets.values()) == 0


class TestFilterAndGroup:
    """Tests for the combined filter-and-group step."""

    def test_filter_and_group_when_multi_day_event_began_before_window_then_listed_not_bucketed(
        self, make_event, ny_tz, local
    ) -> None:
        """Test a Sunday-to-Tuesday event is in range but in no day bucket."""
        spanning = make_event("spanning", local(2, 20), end=local(4, 6))
        tuesday = make_event("tuesday", local(4, 10))

        events, days = filter_and_group([spanning, tuesday], MONDAY, tz=ny_tz)

        assert spanning in events
        assert all(spanning not in bucket for bucket in days.values())
        assert days["2025-03-04"] == [tuesday]

    def test_filter_and_group_when_keys_given_then_used_for_buckets(
        self, make_event, ny_tz, local
    ) -> None:
        """Test precomputed keys are shared with the grouping step."""
        event = make_event("monday", local(3, 9))

        events, days = filter_and_group([event], MONDAY, KEYS, ny_tz)

        assert events == [event]
        assert list(days) == KEYS
        assert days["2025-03-03"] == [event]

    def test_filter_and_group_when_bucketed_then_every_bucketed_event_in_filtered_list(
        self, make_event, ny_tz, local
    ) -> None:
        """Test buckets are a subset of the filtered list."""
        events_in = [make_event(f"e{day}", local(day, 12)) for day in range(1, 12)]

        events, days = filter_and_group(events_in, MONDAY, tz=ny_tz)

        bucketed = [e for bucket in days.values() for e in bucket]
        assert len(bucketed) == 5
        assert all(e in events for e in bucketed)

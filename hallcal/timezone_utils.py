"""Clock and display-timezone helpers for hallcal.

The "display timezone" is the zone in which a human reads the calendar: day
buckets, week boundaries, bare dates and floating times are all interpreted
in it. It defaults to the host's local zone and can be pinned with
``HALLCAL_TIMEZONE`` or the ``display_timezone`` config field.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo

from dateutil import parser as date_parser
from dateutil import tz as dateutil_tz

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "HALLCAL_TEST_TIME"
TIMEZONE_ENV = "HALLCAL_TIMEZONE"


class TimezoneResolver:
    """Resolves the display timezone from explicit settings, env or the host."""

    def __init__(self) -> None:
        self._configured: datetime.tzinfo | None = None

    def configure(self, name: str | None) -> None:
        """Pin the display timezone to an IANA name (empty/None resets to auto)."""
        if not name:
            self._configured = None
            return
        try:
            self._configured = zoneinfo.ZoneInfo(name)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            logger.warning("Invalid display timezone %r, using host local zone", name)
            self._configured = None
        else:
            logger.debug("Display timezone pinned to %s", name)

    def get_display_timezone(self) -> datetime.tzinfo:
        if self._configured is not None:
            return self._configured

        env_name = os.environ.get(TIMEZONE_ENV, "").strip()
        if env_name:
            try:
                return zoneinfo.ZoneInfo(env_name)
            except (zoneinfo.ZoneInfoNotFoundError, ValueError):
                logger.warning("Invalid %s=%r, using host local zone", TIMEZONE_ENV, env_name)

        # tzlocal follows the host's DST rules, unlike datetime.now().astimezone()
        return dateutil_tz.tzlocal()


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via the HALLCAL_TEST_TIME environment
        variable (ISO 8601, e.g. "2025-03-05T10:00:00-05:00"). A naive value
        is taken to be UTC.
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
            except ValueError as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)
            else:
                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.timezone.utc)
                return dt.replace(tzinfo=datetime.timezone.utc)

        return datetime.datetime.now(datetime.timezone.utc)


_resolver = TimezoneResolver()
_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def configure_display_timezone(name: str | None) -> None:
    _resolver.configure(name)


def get_display_timezone() -> datetime.tzinfo:
    """Return the timezone used for day keys and local-midnight semantics."""
    return _resolver.get_display_timezone()


def to_utc(dt: datetime.datetime, local_tz: datetime.tzinfo | None = None) -> datetime.datetime:
    """Resolve a datetime to an absolute UTC instant.

    Naive (floating) values are interpreted in ``local_tz`` or the display
    timezone.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=local_tz or get_display_timezone())
    return dt.astimezone(datetime.timezone.utc)


def local_midnight(day: datetime.date, local_tz: datetime.tzinfo | None = None) -> datetime.datetime:
    """Return the aware datetime for 00:00 of ``day`` in the display timezone."""
    zone = local_tz or get_display_timezone()
    return datetime.datetime(day.year, day.month, day.day, tzinfo=zone)


def to_local_date_key(dt: datetime.datetime, local_tz: datetime.tzinfo | None = None) -> str:
    """YYYY-MM-DD of ``dt`` in the display timezone."""
    zone = local_tz or get_display_timezone()
    return to_utc(dt, zone).astimezone(zone).date().isoformat()

"""Shared test configuration for hallcal."""

import datetime
import logging
import zoneinfo
from collections.abc import Generator
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest

from hallcal.feed_models import CalendarEvent
from hallcal.logging_config import THIRD_PARTY_LEVELS
from hallcal.timezone_utils import configure_display_timezone
from tests.fixtures.ics_samples import FIXED_NOW

_HALLCAL_ENV_VARS = (
    "HALLCAL_TEST_TIME",
    "HALLCAL_TIMEZONE",
    "HALLCAL_CONFIG",
    "HALLCAL_DEBUG",
    "HALLCAL_LOG_LEVEL",
    "HALLCAL_WEB_HOST",
    "HALLCAL_WEB_PORT",
)


def pytest_configure(config: Any) -> None:
    """Register hallcal test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "fast: Tests that finish in well under a second")
    config.addinivalue_line("markers", "integration: Tests that wire several components together")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear HALLCAL_* variables and the pinned display timezone around each test."""
    for name in _HALLCAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    configure_display_timezone(None)
    yield
    configure_display_timezone(None)


@pytest.fixture
def ny_tz() -> zoneinfo.ZoneInfo:
    """Deterministic display timezone; avoids host-local differences."""
    return zoneinfo.ZoneInfo("America/New_York")


@pytest.fixture
def fixed_now() -> datetime.datetime:
    return FIXED_NOW


@pytest.fixture
def frozen_clock() -> Callable[[], datetime.datetime]:
    """Time provider pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object with fast retry behaviour."""
    return SimpleNamespace(
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=1.5,
        default_refresh_minutes=5,
        min_refresh_minutes=1,
        max_refresh_minutes=60,
        recurrence_days_past=7,
        recurrence_days_future=90,
        max_occurrences=500,
    )


@pytest.fixture
def make_event() -> Callable[..., CalendarEvent]:
    """Factory for CalendarEvent instances with sensible defaults."""

    def _make(
        event_id: str,
        start: datetime.datetime,
        end: Optional[datetime.datetime] = None,
        feed_id: str = "feed-a",
        title: Optional[str] = None,
        all_day: bool = False,
    ) -> CalendarEvent:
        return CalendarEvent(
            id=event_id,
            title=title or event_id,
            start=start,
            end=end if end is not None else start + datetime.timedelta(hours=1),
            all_day=all_day,
            feed_id=feed_id,
            feed_name=feed_id.upper(),
            color="#336699",
        )

    return _make


@pytest.fixture
def restore_logger_levels() -> Generator[None, Any, None]:
    """Put logger levels back so later tests' caplog is unaffected."""
    names = ("", "hallcal", *THIRD_PARTY_LEVELS)
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)

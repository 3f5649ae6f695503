"""Data models for calendar feed aggregation - hallcal."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .feed_exceptions import FeedErrorKind
from .timezone_utils import now_utc as _now_utc

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MINUTES = 5
MIN_REFRESH_MINUTES = 1
MAX_REFRESH_MINUTES = 60

NO_TITLE_PLACEHOLDER = "(No title)"


@dataclass(frozen=True)
class RefreshBounds:
    """Allowed range and default for per-feed refresh intervals."""

    default: int = DEFAULT_REFRESH_MINUTES
    minimum: int = MIN_REFRESH_MINUTES
    maximum: int = MAX_REFRESH_MINUTES

    def clamp(self, minutes: Optional[float]) -> float:
        """Return ``minutes`` if within bounds, otherwise the default."""
        if minutes is None or not self.minimum <= minutes <= self.maximum:
            return self.default
        return minutes


class FeedConfig(BaseModel):
    """Configuration for one calendar feed subscription.

    Accepts the camelCase ``refreshMinutes`` key used by stored feed lists.
    """

    id: str = Field(..., min_length=1, description="Stable feed identifier")
    name: str = Field(..., description="Human-readable feed name")
    url: str = Field(..., min_length=1, description="ICS feed URL (http, https or webcal)")
    color: str = Field(default="#888888", description="Display color for the feed's events")
    refresh_minutes: Optional[float] = Field(
        default=None, alias="refreshMinutes", description="Refresh interval in minutes"
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("refresh_minutes", mode="before")
    @classmethod
    def _coerce_refresh_minutes(cls, value: Any) -> Optional[float]:
        # Out-of-range values are kept and clamped later; junk becomes "absent"
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric refreshMinutes=%r", value)
            return None

    def effective_refresh_minutes(self, bounds: RefreshBounds | None = None) -> float:
        return (bounds or RefreshBounds()).clamp(self.refresh_minutes)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the stored feed-list record shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CalendarEvent(BaseModel):
    """One concrete event occurrence from one feed.

    Instances are immutable and regenerated on every parse. ``start`` and
    ``end`` are absolute instants stored in UTC.
    """

    id: str = Field(..., description="Unique within the merged set, stable across refetches")
    title: str = Field(..., min_length=1)
    start: datetime.datetime
    end: datetime.datetime
    all_day: bool = False
    feed_id: str
    feed_name: str
    color: str
    location: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _require_instant(cls, value: datetime.datetime) -> datetime.datetime:
        if value.tzinfo is None:
            raise ValueError("event times must be timezone-aware instants")
        return value.astimezone(datetime.timezone.utc)

    @field_serializer("start", "end")
    def serialize_datetime(self, dt: datetime.datetime) -> str:
        return dt.isoformat()

    @property
    def duration(self) -> datetime.timedelta:
        """Duration; may be zero or negative for inconsistent source records."""
        return self.end - self.start


class FeedErrorInfo(BaseModel):
    """The most recent failure recorded for a feed."""

    kind: FeedErrorKind
    message: str
    occurred_at: datetime.datetime = Field(default_factory=_now_utc)

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    @field_serializer("occurred_at")
    def serialize_datetime(self, dt: datetime.datetime) -> str:
        return dt.isoformat()


class FeedState(BaseModel):
    """Snapshot of one feed's latest data, owned by its aggregator.

    Snapshots are replaced, never mutated. ``revision`` increases on every
    completed refresh, successful or not, so readers can detect change
    without comparing event lists.
    """

    feed_id: str
    events: tuple[CalendarEvent, ...] = ()
    last_error: Optional[FeedErrorInfo] = None
    revision: int = 0
    last_success_at: Optional[datetime.datetime] = None
    last_attempt_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_error(self) -> bool:
        return self.last_error is not None

    def with_success(self, events: list[CalendarEvent], at: datetime.datetime) -> FeedState:
        return self.model_copy(
            update={
                "events": tuple(events),
                "last_error": None,
                "revision": self.revision + 1,
                "last_success_at": at,
                "last_attempt_at": at,
            }
        )

    def with_failure(self, error: FeedErrorInfo, at: datetime.datetime) -> FeedState:
        # Stale retention: previous events stay in place
        return self.model_copy(
            update={
                "last_error": error,
                "revision": self.revision + 1,
                "last_attempt_at": at,
            }
        )


class MergedEventSet(BaseModel):
    """Union of all feeds' current events, tagged with the revisions it reflects."""

    events: tuple[CalendarEvent, ...] = ()
    revisions: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def __len__(self) -> int:
        return len(self.events)


class WeekView(BaseModel):
    """Everything the view layer needs to render one 5-weekday window."""

    week_start: datetime.date
    date_keys: list[str]
    events: list[CalendarEvent] = Field(default_factory=list)
    days: dict[str, list[CalendarEvent]] = Field(default_factory=dict)
    failed_feeds: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    @field_serializer("week_start")
    def serialize_date(self, d: datetime.date) -> str:
        return d.isoformat()

"""Per-feed fetch/parse lifecycle with stale-data retention - hallcal."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from .feed_exceptions import FeedError, ParseFailureError
from .feed_fetcher import FeedFetcher
from .feed_models import CalendarEvent, FeedConfig, FeedErrorInfo, FeedState
from .ics_normalizer import ensure_calendar_text
from .ics_parser import FeedICSParser
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

StateListener = Callable[[str, FeedState], None]


class FeedAggregator:
    """Owns one feed's state and refresh cycle.

    Only this object replaces the feed's ``FeedState``. A failed refresh
    records the error and keeps the previous events; once closed, results of
    fetches still in flight are discarded.
    """

    def __init__(
        self,
        feed: FeedConfig,
        fetcher: FeedFetcher,
        parser: FeedICSParser,
        time_provider: Callable = now_utc,
        listener: Optional[StateListener] = None,
        initial_state: Optional[FeedState] = None,
    ):
        self.feed = feed
        self.fetcher = fetcher
        self.parser = parser
        self.time_provider = time_provider
        self.listener = listener
        self._state = initial_state or FeedState(feed_id=feed.id)
        self._closed = False

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop accepting results; in-flight refreshes finish without effect."""
        self._closed = True

    async def fetch_and_parse(self, feed: Optional[FeedConfig] = None) -> list[CalendarEvent]:
        """Fetch, normalize and parse the feed.

        Raises:
            NetworkFailureError: Retrieval failed
            TextNotCalendarError: Body is not a calendar
            ParseFailureError: Body is not a parsable calendar
        """
        feed = feed or self.feed
        text = await self.fetcher.fetch_text(feed.url)
        normalized = ensure_calendar_text(text)
        return self.parser.parse(normalized, feed.id, feed.name, feed.color)

    async def refresh(self) -> FeedState:
        """Run one refresh cycle and return the resulting state snapshot.

        Never raises for feed-scoped failures; they are recorded on the state.
        """
        feed = self.feed
        events: list[CalendarEvent] = []
        try:
            events = await self.fetch_and_parse(feed)
        except FeedError as e:
            error = FeedErrorInfo(kind=e.kind, message=str(e), occurred_at=self.time_provider())
        except Exception as e:
            # A bug below the parser boundary still must not take down other feeds
            logger.exception("Unexpected error refreshing feed %r", feed.name)
            error = FeedErrorInfo(
                kind=ParseFailureError.kind,
                message=f"Unexpected error: {e}",
                occurred_at=self.time_provider(),
            )
        else:
            error = None

        if self._closed:
            logger.debug("Discarding late refresh result for closed feed %r", feed.name)
            return self._state

        now = self.time_provider()
        if error is None:
            self._state = self._state.with_success(events, now)
            logger.info("Feed %r refreshed: %d events", feed.name, len(events))
        else:
            self._state = self._state.with_failure(error, now)
            logger.warning(
                "Feed %r refresh failed (%s): %s; keeping %d previous events",
                feed.name,
                error.kind,
                error.message,
                len(self._state.events),
            )

        if self.listener is not None:
            self.listener(feed.id, self._state)
        return self._state

"""Calendar service facade - hallcal.

Ties the pipeline together for a consumer such as the HTTP API or the CLI:
one ``FeedAggregator`` per configured feed, a ``FeedScheduler`` for their
independent timers, a ``MultiFeedMerger`` for the fan-in and the week
bucketizer for the selected 5-day window.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError

from .event_merger import MultiFeedMerger
from .feed_aggregator import FeedAggregator, StateListener
from .feed_exceptions import FeedConfigValidationError
from .feed_fetcher import FeedFetcher
from .feed_models import FeedConfig, FeedState, MergedEventSet, RefreshBounds, WeekView
from .feed_scheduler import FeedScheduler
from .ics_parser import FeedICSParser
from .rrule_expander import RecurrenceWindow
from .timezone_utils import get_display_timezone, now_utc
from .week_bucketizer import (
    filter_and_group,
    get_week_date_keys,
    get_week_start,
    shift_week,
)

logger = logging.getLogger(__name__)

FeedLike = Union[FeedConfig, Mapping[str, Any]]


def coerce_feed_configs(feeds: Iterable[FeedLike]) -> list[FeedConfig]:
    """Validate feed records into ``FeedConfig`` objects.

    Raises:
        FeedConfigValidationError: If a record is invalid or an id repeats
    """
    configs: list[FeedConfig] = []
    seen: set[str] = set()
    for index, feed in enumerate(feeds):
        if isinstance(feed, FeedConfig):
            config = feed
        else:
            try:
                config = FeedConfig.model_validate(feed)
            except ValidationError as e:
                raise FeedConfigValidationError(f"Invalid feed record #{index}: {e}") from e
        if config.id in seen:
            raise FeedConfigValidationError(f"Duplicate feed id: {config.id}")
        seen.add(config.id)
        configs.append(config)
    return configs


def refresh_bounds_from_settings(settings: Any) -> RefreshBounds:
    defaults = RefreshBounds()
    return RefreshBounds(
        default=getattr(settings, "default_refresh_minutes", defaults.default),
        minimum=getattr(settings, "min_refresh_minutes", defaults.minimum),
        maximum=getattr(settings, "max_refresh_minutes", defaults.maximum),
    )


class CalendarService:
    """View-model over all configured feeds.

    Holds the selected week, reconciles feed list changes without losing the
    data of feeds that did not change, and produces ``WeekView`` snapshots.
    """

    def __init__(
        self,
        feeds: Iterable[FeedLike] = (),
        settings: Any = None,
        fetcher: Optional[FeedFetcher] = None,
        parser: Optional[FeedICSParser] = None,
        time_provider: Callable[[], datetime.datetime] = now_utc,
        local_tz: Optional[datetime.tzinfo] = None,
        on_update: Optional[StateListener] = None,
    ):
        """Initialize the service.

        Args:
            feeds: Initial feed records or ``FeedConfig`` objects
            settings: Application settings (``AppConfig`` or any object with its attributes)
            fetcher: Feed fetcher; built from ``settings`` if None
            parser: Feed parser; built from ``settings`` if None
            time_provider: Callable returning the current UTC time
            local_tz: Display timezone (resolved per call if None)
            on_update: Called with (feed_id, state) after every feed refresh
        """
        self.settings = settings
        self.time_provider = time_provider
        self._local_tz = local_tz
        self.on_update = on_update
        self.fetcher = fetcher or FeedFetcher(settings)
        self.parser = parser or FeedICSParser(
            RecurrenceWindow.from_settings(settings), local_tz, time_provider
        )
        self.scheduler = FeedScheduler(refresh_bounds_from_settings(settings))
        self.merger = MultiFeedMerger()

        self._feeds: list[FeedConfig] = []
        self._aggregators: dict[str, FeedAggregator] = {}
        self._background: set[asyncio.Task] = set()
        self._started = False
        self.week_start = get_week_start(self.today())
        self.update_config(feeds)

    @property
    def local_tz(self) -> datetime.tzinfo:
        return self._local_tz or get_display_timezone()

    @property
    def feeds(self) -> list[FeedConfig]:
        return list(self._feeds)

    @property
    def started(self) -> bool:
        return self._started

    def today(self) -> datetime.date:
        return self.time_provider().astimezone(self.local_tz).date()

    def get_aggregator(self, feed_id: str) -> Optional[FeedAggregator]:
        return self._aggregators.get(feed_id)

    def states(self) -> dict[str, FeedState]:
        """Current state snapshot of every feed, in configuration order."""
        return {feed.id: self._aggregators[feed.id].state for feed in self._feeds}

    def _build_aggregator(
        self, feed: FeedConfig, initial_state: Optional[FeedState] = None
    ) -> FeedAggregator:
        return FeedAggregator(
            feed,
            self.fetcher,
            self.parser,
            time_provider=self.time_provider,
            listener=self.on_update,
            initial_state=initial_state,
        )

    def update_config(self, feeds: Iterable[FeedLike]) -> list[str]:
        """Replace the feed list.

        Unchanged feeds keep their aggregator and timer. A changed feed with
        the same url keeps its events until its next refresh. Removed feeds
        are closed so late fetch results are discarded.

        Returns:
            Ids of feeds that need a fresh fetch (new url, name or color)

        Raises:
            FeedConfigValidationError: If any record is invalid
        """
        configs = coerce_feed_configs(feeds)
        previous = self._aggregators
        aggregators: dict[str, FeedAggregator] = {}
        needs_fetch: list[str] = []

        for feed in configs:
            old = previous.get(feed.id)
            if old is not None and old.feed == feed:
                aggregators[feed.id] = old
                continue
            if old is None:
                aggregators[feed.id] = self._build_aggregator(feed)
                needs_fetch.append(feed.id)
                continue

            old.close()
            if old.feed.url == feed.url:
                aggregators[feed.id] = self._build_aggregator(feed, old.state)
                if (old.feed.name, old.feed.color) != (feed.name, feed.color):
                    needs_fetch.append(feed.id)
            else:
                # New url: drop the events but keep the revision increasing
                reset = FeedState(feed_id=feed.id, revision=old.state.revision + 1)
                aggregators[feed.id] = self._build_aggregator(feed, reset)
                needs_fetch.append(feed.id)

        for feed_id, old in previous.items():
            if feed_id not in aggregators:
                old.close()
                logger.info("Removed feed %r", old.feed.name)

        self._feeds = configs
        self._aggregators = aggregators
        self.merger.invalidate()
        logger.debug(
            "Feed configuration updated: %d feed(s), %d need fetching", len(configs), len(needs_fetch)
        )

        if self._started:
            self.scheduler.sync(aggregators.values())
            if needs_fetch:
                self._spawn(self._refresh_ids(needs_fetch), "feed-config-refresh")
        return needs_fetch

    def _spawn(self, coro: Any, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _refresh_ids(self, feed_ids: Iterable[str]) -> None:
        targets = [self._aggregators[i] for i in feed_ids if i in self._aggregators]
        await self.scheduler.refresh_all(targets)

    async def start(self, wait: bool = False) -> None:
        """Start per-feed timers and run the initial load.

        Args:
            wait: Await the initial load instead of running it in the background
        """
        if self._started:
            return
        self._started = True
        self.scheduler.start(self._aggregators.values())
        logger.info("Calendar service started with %d feed(s)", len(self._feeds))
        if wait:
            await self.refresh_all()
        else:
            self._spawn(self.refresh_all(), "feed-initial-refresh")

    async def stop(self) -> None:
        """Cancel all timers and background work; discard in-flight results."""
        self._started = False
        background = list(self._background)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        await self.scheduler.stop()
        for aggregator in self._aggregators.values():
            aggregator.close()
        logger.info("Calendar service stopped")

    async def refresh_all(self) -> dict[str, FeedState]:
        """Refresh every feed concurrently and return the resulting states."""
        await self.scheduler.refresh_all(list(self._aggregators.values()))
        return self.states()

    def merged(self) -> MergedEventSet:
        return self.merger.merge(self.states())

    def failed_feeds(self) -> list[str]:
        """Names of feeds whose most recent refresh failed."""
        return [
            feed.name for feed in self._feeds if self._aggregators[feed.id].state.has_error
        ]

    def error_summary(self) -> Optional[str]:
        """Aggregate failure message, e.g. "Failed: Work; Home failed"."""
        failed = self.failed_feeds()
        if not failed:
            return None
        summary = f"Failed: {failed[0]}"
        for name in failed[1:]:
            summary += f"; {name} failed"
        return summary

    def week_view(self, week_start: Optional[datetime.date] = None) -> WeekView:
        """Build the view snapshot for ``week_start`` (the selected week if None)."""
        week_start = week_start or self.week_start
        date_keys = get_week_date_keys(week_start)
        events, days = filter_and_group(self.merged().events, week_start, date_keys, self.local_tz)
        return WeekView(
            week_start=week_start,
            date_keys=date_keys,
            events=events,
            days=days,
            failed_feeds=self.failed_feeds(),
            error=self.error_summary(),
        )

    def go_to_prev_week(self) -> datetime.date:
        self.week_start = shift_week(self.week_start, -1)
        return self.week_start

    def go_to_next_week(self) -> datetime.date:
        self.week_start = shift_week(self.week_start, 1)
        return self.week_start

    def go_to_this_week(self) -> datetime.date:
        self.week_start = get_week_start(self.today())
        return self.week_start

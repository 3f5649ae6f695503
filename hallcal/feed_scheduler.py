"""Independent per-feed refresh timers - hallcal.

Each feed gets its own asyncio task that sleeps for that feed's interval
and then refreshes it, so a slow or failing feed never delays another.
Tasks are keyed by feed id and cancelled explicitly on teardown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Optional

from .feed_aggregator import FeedAggregator
from .feed_models import FeedState, RefreshBounds

logger = logging.getLogger(__name__)


class FeedScheduler:
    """Owns one cancellable repeating refresh task per feed."""

    def __init__(self, bounds: Optional[RefreshBounds] = None):
        self.bounds = bounds or RefreshBounds()
        self._tasks: dict[str, asyncio.Task] = {}
        self._aggregators: dict[str, FeedAggregator] = {}

    @property
    def scheduled_feed_ids(self) -> list[str]:
        return [feed_id for feed_id, task in self._tasks.items() if not task.done()]

    def interval_seconds(self, aggregator: FeedAggregator) -> float:
        return aggregator.feed.effective_refresh_minutes(self.bounds) * 60.0

    def schedule(self, aggregator: FeedAggregator) -> asyncio.Task:
        """Start (or restart) the repeating refresh task for one feed.

        Must be called with a running event loop.
        """
        feed_id = aggregator.feed.id
        self.unschedule(feed_id)
        interval = self.interval_seconds(aggregator)
        task = asyncio.create_task(
            self._run_feed_loop(aggregator, interval), name=f"feed-refresh:{feed_id}"
        )
        self._tasks[feed_id] = task
        self._aggregators[feed_id] = aggregator
        logger.debug("Scheduled feed %r every %.0f seconds", aggregator.feed.name, interval)
        return task

    def unschedule(self, feed_id: str) -> Optional[asyncio.Task]:
        """Cancel one feed's timer. Returns the cancelled task, if any."""
        task = self._tasks.pop(feed_id, None)
        self._aggregators.pop(feed_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Cancelled refresh timer for feed %s", feed_id)
        return task

    def start(self, aggregators: Iterable[FeedAggregator]) -> None:
        for aggregator in aggregators:
            self.schedule(aggregator)

    def sync(self, aggregators: Iterable[FeedAggregator]) -> None:
        """Make the running timers match ``aggregators``.

        Timers for feeds no longer present are cancelled; feeds whose
        aggregator object changed are rescheduled; the rest keep running.
        """
        wanted = {aggregator.feed.id: aggregator for aggregator in aggregators}
        for feed_id in list(self._tasks):
            if feed_id not in wanted:
                self.unschedule(feed_id)
        for feed_id, aggregator in wanted.items():
            task = self._tasks.get(feed_id)
            if task is None or task.done() or self._aggregators.get(feed_id) is not aggregator:
                self.schedule(aggregator)

    async def _run_feed_loop(self, aggregator: FeedAggregator, interval: float) -> None:
        # First refresh is owned by refresh_all; the timer only handles repeats
        while not aggregator.closed:
            await asyncio.sleep(interval)
            if aggregator.closed:
                break
            try:
                await aggregator.refresh()
            except Exception:
                logger.exception("Refresh loop error for feed %r", aggregator.feed.name)

    async def refresh_all(self, aggregators: Iterable[FeedAggregator]) -> list[FeedState]:
        """Refresh the given feeds concurrently and return their states.

        Used for the initial load and manual refreshes; periodic refresh is
        always per-feed.
        """
        aggregators = list(aggregators)
        if not aggregators:
            return []

        results = await asyncio.gather(
            *(aggregator.refresh() for aggregator in aggregators), return_exceptions=True
        )
        states: list[FeedState] = []
        for aggregator, result in zip(aggregators, results):
            if isinstance(result, BaseException):
                logger.error("Feed %r refresh raised: %s", aggregator.feed.name, result)
                states.append(aggregator.state)
            else:
                states.append(result)
        return states

    async def stop(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._aggregators.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Stopped %d feed refresh timer(s)", len(tasks))

"""Fan-in of per-feed event lists into one merged set - hallcal.

The merge is a pure projection: concatenation of every feed's current
events. Order across feeds is irrelevant (day buckets re-sort) and no
feed-owned collection is ever handed out.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Optional

from .feed_models import CalendarEvent, FeedState, MergedEventSet

logger = logging.getLogger(__name__)


def merge_feed_states(states: Mapping[str, FeedState]) -> list[CalendarEvent]:
    """Concatenate the events of all feed states into a fresh list."""
    merged: list[CalendarEvent] = []
    for state in states.values():
        merged.extend(state.events)
    return merged


class MultiFeedMerger:
    """Merges feed states, recomputing only when a feed revision changes.

    Change detection uses each state's revision counter rather than object
    identity, so adding, removing or refreshing any feed invalidates the
    cached result and nothing else does.
    """

    def __init__(self) -> None:
        self._cached: Optional[MergedEventSet] = None
        self.recompute_count = 0

    def merge(self, states: Mapping[str, FeedState]) -> MergedEventSet:
        revisions = {feed_id: state.revision for feed_id, state in states.items()}
        if self._cached is not None and revisions == self._cached.revisions:
            return self._cached

        merged = MergedEventSet(events=tuple(merge_feed_states(states)), revisions=revisions)
        self._cached = merged
        self.recompute_count += 1
        logger.debug(
            "Merged %d events from %d feeds (recompute #%d)",
            len(merged.events),
            len(states),
            self.recompute_count,
        )
        return merged

    def invalidate(self) -> None:
        self._cached = None

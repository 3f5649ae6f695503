"""JSON-backed shared feed list for hallcal with atomic writes."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Union

from .feed_exceptions import FeedConfigValidationError
from .feed_models import FeedConfig

logger = logging.getLogger(__name__)


class FeedConfigStore:
    """Persistent feed list shared by every display that talks to this server.

    The on-disk format is a JSON array of feed records as accepted by
    ``FeedConfig`` (``id``, ``name``, ``url``, ``color``, ``refreshMinutes``).
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> list[dict[str, Any]]:
        """Return the stored records; ``[]`` for a missing or unreadable file."""
        with self._lock:
            if not self._path.exists():
                logger.debug("Feed store file not found; starting empty: %s", self._path)
                return []
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                logger.error("Failed to read feed store %s: %s", self._path, exc)
                return []

        if not isinstance(data, list):
            logger.error("Feed store %s does not hold a JSON array; ignoring", self._path)
            return []
        return [record for record in data if isinstance(record, dict)]

    def read_feeds(self) -> list[FeedConfig]:
        """Stored records that validate as feeds; invalid ones are logged and skipped."""
        feeds: list[FeedConfig] = []
        for record in self.read():
            try:
                feeds.append(FeedConfig.model_validate(record))
            except ValueError as exc:
                logger.warning("Skipping invalid stored feed record %r: %s", record.get("id"), exc)
        return feeds

    def write(self, records: Iterable[Union[FeedConfig, Mapping[str, Any]]]) -> list[dict[str, Any]]:
        """Validate and persist the feed list, replacing the file atomically.

        Returns:
            The normalized records that were written

        Raises:
            FeedConfigValidationError: If any record is not a valid feed
            OSError: If the file could not be written
        """
        normalized: list[dict[str, Any]] = []
        for index, record in enumerate(records):
            if isinstance(record, FeedConfig):
                feed = record
            else:
                try:
                    feed = FeedConfig.model_validate(record)
                except ValueError as exc:
                    raise FeedConfigValidationError(f"Invalid feed record #{index}: {exc}") from exc
            normalized.append(feed.to_record())

        with self._lock:
            self._persist(normalized)
        logger.info("Saved %d feed(s) to %s", len(normalized), self._path)
        return normalized

    def _persist(self, data: list[dict[str, Any]]) -> None:
        # Temp file in the same directory so replace() stays on one filesystem
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError:
            logger.exception("Failed to persist feed store to %s", self._path)
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

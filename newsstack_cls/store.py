"""Bounded in-memory news store: identity → record, newest-first reads.

One writer at a time (``merge``), any number of concurrent readers.
Readers always receive detached copies, never references into the live
table.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional

from .common_types import NewsRecord
from .locks import ReadWriteLock

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


def _newest_first(records: Iterable[NewsRecord]) -> List[NewsRecord]:
    # Ties on publish time fall back to id so eviction is deterministic.
    return sorted(records, key=lambda r: (r.published_ts, r.news_id), reverse=True)


class NewsStore:
    """Merge-on-ingest table holding at most *capacity* records."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._records: dict[str, NewsRecord] = {}
        self._lock = ReadWriteLock()
        self._last_update_ts: float = 0.0

    # ── Writes ──────────────────────────────────────────────────

    def merge(self, batch: Iterable[NewsRecord]) -> int:
        """Insert-or-replace every record with a non-empty id.

        A later fetch replaces an earlier one wholesale (last write
        wins).  When the table outgrows ``capacity`` only the newest
        records by publish time are kept; the rest are dropped silently.

        Returns the number of ids that were not in the store before.
        """
        incoming = [r.copy() for r in batch if r.news_id]
        with self._lock.write():
            old_count = len(self._records)
            added = 0
            for r in incoming:
                if r.news_id not in self._records:
                    added += 1
                self._records[r.news_id] = r

            evicted = 0
            if len(self._records) > self.capacity:
                keep = _newest_first(self._records.values())[: self.capacity]
                evicted = len(self._records) - len(keep)
                self._records = {r.news_id: r for r in keep}

            self._last_update_ts = time.time()
            total = len(self._records)

        logger.info(
            "News store updated: %d total (%d new, %d before, %d evicted)",
            total, added, old_count, evicted,
        )
        return added

    def clear(self) -> None:
        with self._lock.write():
            self._records.clear()
            self._last_update_ts = time.time()

    # ── Reads ───────────────────────────────────────────────────

    def snapshot(self, limit: int = 0) -> List[NewsRecord]:
        """Records newest first; ``limit <= 0`` means all of them."""
        with self._lock.read():
            ordered = _newest_first(self._records.values())
            if limit > 0:
                ordered = ordered[:limit]
            return [r.copy() for r in ordered]

    def get(self, news_id: str) -> Optional[NewsRecord]:
        with self._lock.read():
            r = self._records.get(news_id)
            return r.copy() if r is not None else None

    @property
    def last_update_ts(self) -> float:
        with self._lock.read():
            return self._last_update_ts

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)

"""Timer-driven refresh of the telegraph feed.

``NewsScheduler`` runs one fetch cycle synchronously on ``start()`` and
then repeats it from a daemon thread every ``interval_s`` seconds.  Each
cycle replaces the ``BatchCache`` with the newest batch and hands the
records that were not in the previous batch to the registered callback.

Usage::

    scheduler = NewsScheduler(extractor, interval_s=300)
    scheduler.set_new_news_callback(log_new_records)
    scheduler.start()
    ...
    scheduler.stop()

Cycles never overlap: timer ticks, the first cycle of ``start()`` and
``force_update()`` all take the same cycle lock.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from .analyzer import NewsAnalyzer
from .common_types import AnalyzedRecord
from .config import Config
from .extract import Extractor
from .locks import ReadWriteLock

logger = logging.getLogger(__name__)

NewNewsCallback = Callable[[List[AnalyzedRecord]], None]


class BatchCache:
    """Latest batch of the scheduler, readable at any time."""

    def __init__(self) -> None:
        self._items: List[AnalyzedRecord] = []
        self._last_update_ts: float = 0.0
        self._lock = ReadWriteLock()

    def set(self, items: List[AnalyzedRecord]) -> None:
        with self._lock.write():
            self._items = list(items)
            self._last_update_ts = time.time()

    def get(self) -> tuple[List[AnalyzedRecord], float]:
        with self._lock.read():
            return list(self._items), self._last_update_ts

    def latest(self, n: int = 0) -> List[AnalyzedRecord]:
        """First *n* items (all when ``n <= 0`` or ``n`` exceeds the size)."""
        with self._lock.read():
            if n <= 0:
                return list(self._items)
            return self._items[:n]


def find_new_items(current: List[AnalyzedRecord], previous: List[AnalyzedRecord]) -> List[AnalyzedRecord]:
    """Items of *current* whose id is absent from *previous*.

    Everything is new when *previous* is empty.
    """
    if not previous:
        return list(current)
    old_ids = {it.news_id for it in previous}
    return [it for it in current if it.news_id not in old_ids]


class NewsScheduler:
    """Stopped → Running → Stopped refresh loop around an ``Extractor``.

    Parameters
    ----------
    extractor : Extractor
    interval_s : float, optional
        Tick interval; defaults to ``cfg.poll_interval_s``.
    analyzer : NewsAnalyzer, optional
        Annotates each batch when ``cfg.analyze_in_cycle`` is set.
    cfg : Config, optional
        Defaults to the extractor's config.
    """

    def __init__(
        self,
        extractor: Extractor,
        interval_s: Optional[float] = None,
        *,
        analyzer: Optional[NewsAnalyzer] = None,
        cfg: Optional[Config] = None,
    ) -> None:
        self._extractor = extractor
        self._cfg = cfg or extractor.cfg
        self.interval_s = float(interval_s if interval_s is not None else self._cfg.poll_interval_s)
        if self.interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {self.interval_s}")
        self._analyzer = analyzer
        self.cache = BatchCache()

        self._state_lock = ReadWriteLock()
        self._cycle_lock = threading.Lock()
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._on_new_news: Optional[NewNewsCallback] = None

        # Observable status
        self.cycle_count: int = 0
        self.last_cycle_ts: float = 0.0
        self.last_cycle_status: str = "—"
        self.last_cycle_error: str = ""

    # ── Lifecycle ───────────────────────────────────────────

    def start(self, timeout_s: Optional[float] = None) -> None:
        """Run one cycle now, then keep refreshing in the background.

        A second call while running is a no-op.  The first cycle uses the
        caller's *timeout_s*; background cycles use ``cfg.cycle_timeout_s``
        and are not tied to the caller in any way.  A failed first cycle
        is logged, not raised.
        """
        with self._state_lock.write():
            if self._running:
                return
            self._running = True
            stop_event = threading.Event()
            self._stop_event = stop_event

        logger.info("Telegraph scheduler starting (interval=%.1fs)", self.interval_s)
        try:
            self._run_cycle(timeout_s)
        except Exception as exc:
            logger.error("Initial telegraph fetch failed: %s", exc)

        thread = threading.Thread(
            target=self._run_loop,
            args=(stop_event,),
            name="cls-telegraph-scheduler",
            daemon=True,
        )
        with self._state_lock.write():
            self._thread = thread
        thread.start()

    def stop(self) -> None:
        """Signal the loop to exit (non-blocking, idempotent).

        An in-flight cycle finishes (or times out) before the loop sees
        the signal; ``is_running()`` reports ``False`` immediately.
        """
        with self._state_lock.write():
            if not self._running:
                return
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
        logger.info("Telegraph scheduler stop requested")

    def is_running(self) -> bool:
        with self._state_lock.read():
            return self._running

    @property
    def is_alive(self) -> bool:
        """True while the background thread itself is still alive."""
        with self._state_lock.read():
            thread = self._thread
        return thread is not None and thread.is_alive()

    # ── Accessors ───────────────────────────────────────────

    def set_new_news_callback(self, callback: Optional[NewNewsCallback]) -> None:
        """Register the sink for new records.

        The callback runs synchronously on the cycle's thread and is not
        time-limited; it must return promptly.
        """
        with self._state_lock.write():
            self._on_new_news = callback

    def get_cached_news(self, limit: int = 0) -> List[AnalyzedRecord]:
        return self.cache.latest(limit)

    def get_cache_info(self) -> tuple[int, float]:
        """``(count, last_update_ts)`` of the latest cached batch."""
        items, last_update = self.cache.get()
        return len(items), last_update

    def force_update(self, timeout_s: Optional[float] = None) -> List[AnalyzedRecord]:
        """Run one cycle now; extraction errors propagate.

        Returns the new items found by this cycle.
        """
        logger.info("Forced telegraph update")
        return self._run_cycle(timeout_s)

    # ── Internals ───────────────────────────────────────────

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Tick loop; exits once *stop_event* is set."""
        logger.info("Telegraph scheduler loop entered")
        while not stop_event.wait(timeout=self.interval_s):
            try:
                self._run_cycle(self._cfg.cycle_timeout_s)
            except Exception as exc:
                logger.exception("Scheduled telegraph fetch failed: %s", exc)
        logger.info("Telegraph scheduler loop exited")

    def _run_cycle(self, timeout_s: Optional[float]) -> List[AnalyzedRecord]:
        """One serialized cycle; status fields are only written under the cycle lock."""
        with self._cycle_lock:
            try:
                return self._fetch_and_publish(timeout_s)
            except Exception as exc:
                self.last_cycle_error = str(exc)
                self.last_cycle_status = "ERROR"
                self.last_cycle_ts = time.time()
                raise

    def _fetch_and_publish(self, timeout_s: Optional[float]) -> List[AnalyzedRecord]:
        logger.info("Fetching latest telegraph items")
        records = self._extractor.fetch_batch(
            self._cfg.cycle_fetch_limit,
            fetch_detail=False,
            timeout_s=timeout_s,
        )
        self.cycle_count += 1
        self.last_cycle_ts = time.time()
        self.last_cycle_error = ""

        if not records:
            logger.warning("Telegraph fetch returned no items")
            self.last_cycle_status = "0 items"
            return []

        if self._analyzer is not None and self._cfg.analyze_in_cycle:
            batch = self._analyzer.batch_analyze(records)
        else:
            batch = [AnalyzedRecord(news=r) for r in records]

        previous, _ = self.cache.get()
        new_items = find_new_items(batch, previous)
        self.cache.set(batch)

        self.last_cycle_status = f"{len(batch)} items, {len(new_items)} new"
        logger.info("Telegraph cycle done: %d items, %d new", len(batch), len(new_items))

        with self._state_lock.read():
            callback = self._on_new_news
        if new_items and callback is not None:
            callback(new_items)
        return new_items

"""Service facade: one-shot fetches, search, analysis and scheduler control.

Every method returns plain JSON-safe dicts so that a CLI, an HTTP
handler or a tool server can wrap it without touching domain types.

One-shot calls open a fresh page driver per call and close it
afterwards.  The scheduler keeps its own driver for as long as the
service lives.  All extractors share one ``NewsStore``: either the one
injected, or a process-wide default created on first use.
"""

from __future__ import annotations

import atexit
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional

from .analyzer import NewsAnalyzer
from .common_types import AnalyzedRecord, NewsRecord
from .config import Config
from .driver import PageDriver, make_driver, optional_close
from .extract import Extractor
from .notify import WebhookNotifier, log_new_records
from .scheduler import NewsScheduler
from .store import NewsStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 5

DriverFactory = Callable[[Config], PageDriver]

# ── Module-level default store (shared across service instances) ──
_default_store: NewsStore | None = None
_default_store_lock = threading.Lock()


def get_default_store(cfg: Config | None = None) -> NewsStore:
    global _default_store
    with _default_store_lock:
        if _default_store is None:
            _default_store = NewsStore((cfg or Config()).store_capacity)
        return _default_store


def _default_driver_factory(cfg: Config) -> PageDriver:
    return make_driver(headless=cfg.headless, executable_path=cfg.browser_bin_path)


def _fmt_ts(ts: float) -> str:
    if not ts:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class NewsService:
    """Facade over extractor, store, analyzer and scheduler."""

    def __init__(
        self,
        cfg: Optional[Config] = None,
        store: Optional[NewsStore] = None,
        driver_factory: Optional[DriverFactory] = None,
        analyzer: Optional[NewsAnalyzer] = None,
    ) -> None:
        self.cfg = cfg or Config()
        self.store = store if store is not None else get_default_store(self.cfg)
        self._driver_factory = driver_factory or _default_driver_factory
        self.analyzer = analyzer or NewsAnalyzer()
        self.scheduler: Optional[NewsScheduler] = None
        self._scheduler_driver: Optional[PageDriver] = None
        self._notifier: Optional[WebhookNotifier] = None
        self._lock = threading.Lock()
        self._starting = False

    # ── One-shot calls ──────────────────────────────────────────

    @contextmanager
    def _session(self) -> Iterator[Extractor]:
        driver = self._driver_factory(self.cfg)
        try:
            yield Extractor(driver, self.store, self.cfg)
        finally:
            optional_close(driver)

    def fetch_latest(self, limit: int = 0, fetch_detail: bool = False) -> dict[str, Any]:
        """Newest items (``limit <= 0``: everything in the store)."""
        with self._session() as extractor:
            news = extractor.fetch_batch(limit, fetch_detail=fetch_detail)
        return {"news": [n.to_dict() for n in news], "count": len(news)}

    def search(self, keyword: str, limit: int = 0) -> dict[str, Any]:
        if not keyword or not keyword.strip():
            raise ValueError("keyword is required")
        with self._session() as extractor:
            news = extractor.search(keyword.strip(), limit)
        return {"news": [n.to_dict() for n in news], "count": len(news), "keyword": keyword}

    def get_by_id(self, news_id: str) -> dict[str, Any]:
        if not news_id:
            raise ValueError("news_id is required")
        with self._session() as extractor:
            news = extractor.fetch_by_id(news_id)
        return news.to_dict()

    def analyze(self, news_id: str = "", content: str = "") -> dict[str, Any]:
        """Analyse a stored record by id, or free text when given."""
        record: Optional[NewsRecord] = self.store.get(news_id) if news_id else None
        if record is None:
            if not content:
                raise ValueError(f"news {news_id!r} not in cache and no content given")
            record = NewsRecord(
                news_id=news_id,
                title="",
                content=content,
                brief=content[:200],
                published_ts=0.0,
                source=self.cfg.source_label,
            )
        return self.analyzer.analyze(record).to_dict()

    # ── Cached data ─────────────────────────────────────────────

    def cached_news(self, limit: int = 0) -> dict[str, Any]:
        news = self.store.snapshot(limit)
        return {"news": [n.to_dict() for n in news], "count": len(news)}

    # ── Scheduler control ───────────────────────────────────────

    def _new_news_sink(self) -> Callable[[List[AnalyzedRecord]], None]:
        if self.cfg.webhook_url and self._notifier is None:
            self._notifier = WebhookNotifier(self.cfg.webhook_url, self.cfg.webhook_timeout_s)
        notifier = self._notifier

        def _sink(items: List[AnalyzedRecord]) -> None:
            log_new_records(items)
            if notifier is not None:
                notifier(items)

        return _sink

    def start_scheduler(self, interval_minutes: float = 0) -> dict[str, Any]:
        with self._lock:
            if self._starting or (self.scheduler is not None and self.scheduler.is_running()):
                return {"success": True, "message": "scheduler already running", "interval": ""}
            if interval_minutes <= 0:
                interval_minutes = DEFAULT_INTERVAL_MINUTES
            interval_s = float(interval_minutes) * 60.0
            if self._scheduler_driver is None:
                self._scheduler_driver = self._driver_factory(self.cfg)
            extractor = Extractor(self._scheduler_driver, self.store, self.cfg)
            self.scheduler = NewsScheduler(extractor, interval_s, analyzer=self.analyzer, cfg=self.cfg)
            self.scheduler.set_new_news_callback(self._new_news_sink())
            scheduler = self.scheduler
            # Held until start() has flipped the scheduler to running
            self._starting = True
        try:
            scheduler.start(timeout_s=self.cfg.cycle_timeout_s)
        finally:
            with self._lock:
                self._starting = False
        return {"success": True, "message": "scheduler started", "interval": f"{interval_s:.0f}s"}

    def stop_scheduler(self) -> dict[str, Any]:
        with self._lock:
            scheduler = self.scheduler
        if scheduler is None or not scheduler.is_running():
            return {"success": True, "message": "scheduler not running"}
        scheduler.stop()
        return {"success": True, "message": "scheduler stopped"}

    def scheduler_status(self) -> dict[str, Any]:
        with self._lock:
            scheduler = self.scheduler
        if scheduler is None:
            return {"running": False, "cached_count": 0, "last_update": 0.0, "last_update_str": ""}
        count, last_update = scheduler.get_cache_info()
        return {
            "running": scheduler.is_running(),
            "cached_count": count,
            "last_update": last_update,
            "last_update_str": _fmt_ts(last_update),
            "cycle_count": scheduler.cycle_count,
            "last_cycle_status": scheduler.last_cycle_status,
            "last_cycle_error": scheduler.last_cycle_error,
        }

    def close(self) -> None:
        """Stop the scheduler and release the browser and HTTP client."""
        with self._lock:
            scheduler, self.scheduler = self.scheduler, None
            driver, self._scheduler_driver = self._scheduler_driver, None
            notifier, self._notifier = self._notifier, None
        if scheduler is not None:
            scheduler.stop()
        optional_close(driver)
        if notifier is not None:
            notifier.close()


def register_cleanup(service: NewsService) -> None:
    """Close *service* at interpreter exit."""
    atexit.register(service.close)

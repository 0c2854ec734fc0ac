"""Telegraph extraction: ordered fallback strategies over a rendered page.

The telegraph list is tried, in strict priority order, via:

 1. ``#__NEXT_DATA__`` – the Next.js payload (exact field mapping)
 2. ``window.__INITIAL_STATE__`` – probed across several nested paths
 3. generic DOM selectors, with per-element field heuristics

The first strategy that yields at least one record wins.  A malformed
payload only skips its own strategy; if every strategy comes back empty
the whole call fails with ``ExtractionError``.

Detail pages (full article text) are fetched one at a time, behind a
randomised delay, and memoised in a per-session ``ContentCache``.
"""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Callable, List, Optional, Sequence

from .common_types import NewsRecord
from .config import Config
from .content_cache import ContentCache
from .dedup import dedupe_records
from .driver import PageDriver
from .errors import (
    ConfigError,
    ContentNotFoundError,
    DriverError,
    ExtractionError,
    ParseError,
    RenderTimeoutError,
)
from .normalize import (
    BRIEF_LEN,
    _to_epoch,
    fill_defaults,
    normalize_dom_element,
    normalize_next_data,
    normalize_state_item,
)
from .store import NewsStore

logger = logging.getLogger(__name__)

# Plausible article body length (characters, exclusive bounds).
MIN_DETAIL_LEN = 50
MAX_DETAIL_LEN = 50_000


# ── Page scripts ────────────────────────────────────────────────

NEXT_DATA_SCRIPT = """() => {
  try {
    const el = document.getElementById('__NEXT_DATA__');
    if (!el) return '';
    const data = JSON.parse(el.textContent);
    const list = data && data.props && data.props.initialState &&
      data.props.initialState.telegraph && data.props.initialState.telegraph.telegraphList;
    return Array.isArray(list) ? JSON.stringify(list) : '';
  } catch (e) {
    return '';
  }
}"""

INITIAL_STATE_SCRIPT = """() => {
  try {
    const s = window.__INITIAL_STATE__;
    if (!s) return '';
    const pick = (o, path) => path.reduce((acc, k) => (acc == null ? undefined : acc[k]), o);
    const paths = [
      ['telegraph', 'telegraphList'],
      ['telegraph', 'list'],
      ['telegraph', 'data', 'list'],
      ['data', 'telegraph', 'list'],
      ['list'],
      ['data', 'list'],
    ];
    for (const p of paths) {
      const v = pick(s, p);
      if (Array.isArray(v) && v.length > 0) return JSON.stringify(v);
    }
    return '';
  } catch (e) {
    return '';
  }
}"""

ITEM_SELECTORS: tuple[str, ...] = (
    'li[class*="telegraph"]',
    'div[class*="telegraph"]',
    'li[class*="item"]',
    'div[class*="item"]',
    'li[class*="list"]',
    'div[class*="list"]',
    ".list-item",
    ".item",
    "article",
    '[class*="news"]',
)
TITLE_SELECTORS: tuple[str, ...] = (
    ".title", '[class*="title"]', "h1", "h2", "h3", "h4", "a",
    'span[class*="title"]', 'div[class*="title"]',
)
CONTENT_SELECTORS: tuple[str, ...] = (
    ".content", '[class*="content"]', ".brief", '[class*="brief"]', "p", ".desc", '[class*="desc"]',
)
TIME_SELECTORS: tuple[str, ...] = (".time", '[class*="time"]', "time", '[class*="date"]', ".date")

_DOM_SCRIPT_TEMPLATE = """() => {
  const itemSelectors = %(items)s;
  const titleSelectors = %(titles)s;
  const contentSelectors = %(contents)s;
  const timeSelectors = %(times)s;
  let nodes = [];
  for (const sel of itemSelectors) {
    nodes = document.querySelectorAll(sel);
    if (nodes.length > 0) break;
  }
  const firstText = (root, sels) => {
    for (const sel of sels) {
      const el = root.querySelector(sel);
      if (el && el.textContent.trim()) return el.textContent.trim();
    }
    return '';
  };
  const out = [];
  nodes.forEach((node, index) => {
    try {
      const all = (node.textContent || '').trim();
      const title = firstText(node, titleSelectors) || all.split('\\n')[0].trim();
      const link = node.querySelector('a');
      out.push({
        index: index,
        title: title,
        content: firstText(node, contentSelectors) || all,
        time: firstText(node, timeSelectors),
        url: (link && link.href) || window.location.href,
      });
    } catch (e) {}
  });
  return JSON.stringify(out);
}"""


def build_dom_script(
    items: Sequence[str] = ITEM_SELECTORS,
    titles: Sequence[str] = TITLE_SELECTORS,
    contents: Sequence[str] = CONTENT_SELECTORS,
    times: Sequence[str] = TIME_SELECTORS,
) -> str:
    return _DOM_SCRIPT_TEMPLATE % {
        "items": json.dumps(list(items)),
        "titles": json.dumps(list(titles)),
        "contents": json.dumps(list(contents)),
        "times": json.dumps(list(times)),
    }


DETAIL_SELECTORS: tuple[str, ...] = (
    ".telegraph-content",
    ".content-box .content",
    "section.content-box .content",
    '[class*="telegraph-content"]',
    "div.telegraph-content",
    "div.content",
    '[class*="article-content"]',
    '[class*="detail-content"]',
    "article",
    "main",
    '[class*="content"]',
)

_DETAIL_SCRIPT_TEMPLATE = """() => {
  const selectors = %(selectors)s;
  for (const sel of selectors) {
    for (const el of document.querySelectorAll(sel)) {
      const text = (el.textContent || '').trim();
      if (text.length > %(lo)d && text.length < %(hi)d) return text;
    }
  }
  return '';
}"""

DETAIL_SCRIPT = _DETAIL_SCRIPT_TEMPLATE % {
    "selectors": json.dumps(list(DETAIL_SELECTORS)),
    "lo": MIN_DETAIL_LEN,
    "hi": MAX_DETAIL_LEN,
}

ITEM_PAGE_SCRIPT = """() => {
  const t = document.querySelector('.detail-title, h1, [class*="title"]');
  const c = document.querySelector('.detail-content, .content, [class*="content"]');
  const p = document.querySelector('.detail-time, time, [class*="time"]');
  return JSON.stringify({
    title: t ? t.textContent.trim() : '',
    content: c ? c.textContent.trim() : '',
    publish_time: p ? p.textContent.trim() : '',
  });
}"""

PAGE_INFO_SCRIPT = """() => {
  const classes = new Set();
  document.querySelectorAll('[class]').forEach(el => {
    const name = typeof el.className === 'string' ? el.className
      : (el.className && el.className.baseVal) || '';
    name.split(' ').forEach(c => { if (c.trim()) classes.add(c.trim()); });
  });
  return JSON.stringify({
    title: document.title,
    hasInitialState: !!window.__INITIAL_STATE__,
    hasNextData: !!document.getElementById('__NEXT_DATA__'),
    bodyClasses: document.body ? (document.body.className || '') : '',
    allClasses: Array.from(classes).slice(0, 50),
  });
}"""


# ── Strategies ──────────────────────────────────────────────────

def _load_list(payload: str, strategy: str) -> list[Any]:
    """Decode a JSON array payload; ``''`` means "nothing here"."""
    if not payload or not payload.strip():
        return []
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ParseError(f"{strategy}: invalid JSON ({exc})", strategy=strategy) from None
    if not isinstance(data, list):
        raise ParseError(f"{strategy}: expected a list, got {type(data).__name__}", strategy=strategy)
    return [it for it in data if isinstance(it, dict)]


class ExtractionStrategy:
    """One attempt at pulling the telegraph list out of the page."""

    name = "base"
    script = ""

    def parse(self, payload: str, now: float, cfg: Config) -> List[NewsRecord]:
        raise NotImplementedError


class NextDataStrategy(ExtractionStrategy):
    name = "next_data"
    script = NEXT_DATA_SCRIPT

    def parse(self, payload: str, now: float, cfg: Config) -> List[NewsRecord]:
        return [
            normalize_next_data(it, i, now, cfg.source_label, cfg.detail_url_base)
            for i, it in enumerate(_load_list(payload, self.name))
        ]


class InitialStateStrategy(ExtractionStrategy):
    name = "initial_state"
    script = INITIAL_STATE_SCRIPT

    def parse(self, payload: str, now: float, cfg: Config) -> List[NewsRecord]:
        return [
            normalize_state_item(it, i, now, cfg.source_label, cfg.detail_url_base, cfg.source_tz)
            for i, it in enumerate(_load_list(payload, self.name))
        ]


class DomSelectorStrategy(ExtractionStrategy):
    """Selector scan plus per-element field heuristics.

    Elements with an implausibly short title are skipped individually;
    they never fail the batch.
    """

    name = "dom_selectors"

    def __init__(self, script: Optional[str] = None) -> None:
        self.script = script or build_dom_script()

    def parse(self, payload: str, now: float, cfg: Config) -> List[NewsRecord]:
        out: List[NewsRecord] = []
        for el in _load_list(payload, self.name):
            rec = normalize_dom_element(el, now, cfg.source_label, cfg.source_tz)
            if rec is not None:
                out.append(rec)
        return out


def default_strategies() -> List[ExtractionStrategy]:
    return [NextDataStrategy(), InitialStateStrategy(), DomSelectorStrategy()]


# ── Time budget ─────────────────────────────────────────────────

class _Budget:
    """Per-call deadline; each driver call gets what is left of it."""

    def __init__(self, timeout_s: Optional[float], per_call_s: float) -> None:
        self._per_call_s = per_call_s
        self._deadline = time.monotonic() + timeout_s if timeout_s and timeout_s > 0 else None

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self, what: str) -> float:
        if self._deadline is None:
            return self._per_call_s
        left = self._deadline - time.monotonic()
        if left <= 0:
            raise RenderTimeoutError(f"{what}: time budget exhausted")
        return min(left, self._per_call_s)


# ── Extractor ───────────────────────────────────────────────────

class Extractor:
    """Fetches telegraph batches and article bodies through a page driver.

    Parameters
    ----------
    driver : PageDriver
        Browser capability (navigate / wait / evaluate / html).
    store : NewsStore
        Store each batch is merged into; may be shared between extractors.
    cfg : Config, optional
    content_cache : ContentCache, optional
        Defaults to a fresh cache owned by this extractor.
    strategies : list, optional
        Batch strategies in priority order.
    sleep, rng, clock
        Injection points for tests (settle waits, detail delay, ``now``).
    """

    def __init__(
        self,
        driver: PageDriver,
        store: NewsStore,
        cfg: Optional[Config] = None,
        content_cache: Optional[ContentCache] = None,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if driver is None:
            raise ConfigError("Extractor requires a page driver")
        if store is None:
            raise ConfigError("Extractor requires a news store")
        self.driver = driver
        self.store = store
        self.cfg = cfg or Config()
        self.content_cache = content_cache if content_cache is not None else ContentCache()
        self.strategies: List[ExtractionStrategy] = list(strategies) if strategies else default_strategies()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    # ── Page helpers ────────────────────────────────────────────

    def _settle(self, seconds: float, budget: _Budget) -> None:
        if seconds > 0:
            self._sleep(min(seconds, budget.remaining("settle")))

    def _open(self, url: str, budget: _Budget, settle_s: float) -> None:
        self.driver.navigate(url, budget.remaining("navigate"))
        self.driver.wait_load(budget.remaining("wait_load"))
        self._settle(settle_s, budget)

    def debug_page_info(self, timeout_s: Optional[float] = None) -> dict[str, Any]:
        """Structural summary of the currently loaded page."""
        budget = _Budget(timeout_s, self.cfg.page_timeout_s)
        raw = self.driver.evaluate(PAGE_INFO_SCRIPT, budget.remaining("page_info"))
        try:
            info = json.loads(raw) if raw else {}
        except (json.JSONDecodeError, ValueError):
            return {}
        return info if isinstance(info, dict) else {}

    def _run_strategies(self, budget: _Budget) -> List[NewsRecord]:
        now = self._clock()
        for strategy in self.strategies:
            try:
                payload = self.driver.evaluate(strategy.script, budget.remaining(strategy.name))
            except RenderTimeoutError:
                raise
            except DriverError as exc:
                # A script that throws in the page counts as a bad payload
                logger.warning("Strategy %s skipped, page script failed: %s", strategy.name, exc)
                continue
            try:
                records = strategy.parse(payload, now, self.cfg)
            except ParseError as exc:
                logger.warning("Strategy %s skipped: %s", strategy.name, exc)
                continue
            if records:
                logger.info("Strategy %s extracted %d items", strategy.name, len(records))
                return records
            logger.debug("Strategy %s found nothing", strategy.name)
        return []

    # ── Batch ───────────────────────────────────────────────────

    def fetch_batch(
        self,
        limit: int = 0,
        fetch_detail: bool = False,
        timeout_s: Optional[float] = None,
    ) -> List[NewsRecord]:
        """Extract, dedupe and merge the telegraph list; return the newest.

        Returns ``store.snapshot(limit)`` after the merge, so the result
        also holds items merged by earlier calls.  With *fetch_detail*
        every returned record with a URL gets its full body (cache
        first; a failed detail fetch keeps the brief content).

        Raises ``ExtractionError`` when no strategy finds any item, and
        lets ``DriverError`` subclasses through unchanged.
        """
        budget = _Budget(timeout_s, self.cfg.page_timeout_s)
        logger.info("Loading telegraph page %s", self.cfg.telegraph_url)
        self._open(self.cfg.telegraph_url, budget, self.cfg.page_settle_s)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Page structure: %s", self.debug_page_info(budget.remaining("page_info")))

        records = self._run_strategies(budget)
        if not records:
            logger.warning("No telegraph items extracted from page")
            try:
                logger.debug("Page HTML length: %d", len(self.driver.html(budget.remaining("html"))))
            except DriverError as exc:
                logger.debug("Could not read page HTML: %s", exc)
            raise ExtractionError("no data extracted from telegraph page")

        records = dedupe_records(records)
        fill_defaults(records, self._clock(), self.cfg.source_label)
        logger.info("Extracted %d unique items", len(records))

        self.store.merge(records)
        latest = self.store.snapshot(limit)
        logger.info("Returning %d items from store", len(latest))

        if not fetch_detail:
            return latest
        self._attach_details(latest, budget)
        return latest

    def _attach_details(self, records: List[NewsRecord], budget: _Budget) -> None:
        """Replace each record's content with its full body (serially)."""
        ok = hits = 0
        total = len(records)
        for i, r in enumerate(records, start=1):
            if not r.url:
                continue
            cached = self.content_cache.get(r.url)
            if cached is not None:
                r.content = cached
                hits += 1
                ok += 1
                continue
            try:
                body = self._fetch_detail(r.url, budget)
            except RenderTimeoutError as exc:
                logger.warning("Detail [%d/%d] %s: %s", i, total, r.url, exc)
                if budget.expired:
                    logger.warning("Time budget exhausted; %d details left unfetched", total - i)
                    break
                continue
            except (ExtractionError, DriverError) as exc:
                logger.warning("Detail [%d/%d] %s: %s", i, total, r.url, exc)
                continue
            r.content = body
            self.content_cache.put(r.url, body)
            ok += 1
            logger.debug("Detail [%d/%d] fetched, %d chars", i, total, len(body))
        logger.info("Fetched %d/%d details (%d from cache)", ok, total, hits)

    # ── Detail ──────────────────────────────────────────────────

    def fetch_detail(self, url: str, timeout_s: Optional[float] = None) -> str:
        """Full body text of one article.

        Raises ``ContentNotFoundError`` when no container holds text of
        plausible length.
        """
        return self._fetch_detail(url, _Budget(timeout_s, self.cfg.page_timeout_s))

    def _fetch_detail(self, url: str, budget: _Budget) -> str:
        if self.cfg.enable_detail_delay:
            lo, hi = self.cfg.detail_delay_range
            delay = self._rng.uniform(lo, hi)
            logger.debug("Waiting %.2fs before detail page", delay)
            self._sleep(min(delay, budget.remaining("detail_delay")))

        self._open(url, budget, self.cfg.detail_settle_s)
        content = (self.driver.evaluate(DETAIL_SCRIPT, budget.remaining("detail")) or "").strip()
        if not (MIN_DETAIL_LEN < len(content) < MAX_DETAIL_LEN):
            raise ContentNotFoundError(f"no content extracted from {url}", url=url)
        return content

    # ── Search / lookup ─────────────────────────────────────────

    def search(self, keyword: str, limit: int = 0, timeout_s: Optional[float] = None) -> List[NewsRecord]:
        """Case-insensitive substring search over title and content."""
        everything = self.fetch_batch(0, fetch_detail=False, timeout_s=timeout_s)
        needle = keyword.lower()
        hits: List[NewsRecord] = []
        for r in everything:
            if needle in r.title.lower() or needle in r.content.lower():
                hits.append(r)
                if limit > 0 and len(hits) >= limit:
                    break
        logger.info("Search %r matched %d items", keyword, len(hits))
        return hits

    def fetch_by_id(self, news_id: str, timeout_s: Optional[float] = None) -> NewsRecord:
        """Load the telegraph page of a single item and scrape it."""
        budget = _Budget(timeout_s, self.cfg.page_timeout_s)
        url = f"{self.cfg.item_url_base}{news_id}"
        self._open(url, budget, self.cfg.detail_settle_s)
        raw = self.driver.evaluate(ITEM_PAGE_SCRIPT, budget.remaining("item"))
        try:
            data = json.loads(raw) if raw else {}
        except (json.JSONDecodeError, ValueError) as exc:
            raise ExtractionError(f"unreadable item page {url}: {exc}") from None
        if not isinstance(data, dict):
            raise ExtractionError(f"unreadable item page {url}")
        title = str(data.get("title") or "").strip()
        content = str(data.get("content") or "").strip()
        if not title and not content:
            raise ExtractionError(f"no data extracted from {url}")
        now = self._clock()
        return NewsRecord(
            news_id=news_id,
            title=title,
            content=content,
            brief=content[:BRIEF_LEN],
            published_ts=_to_epoch(data.get("publish_time"), self.cfg.source_tz, now) or now,
            source=self.cfg.source_label,
            tags=[],
            url=url,
        )

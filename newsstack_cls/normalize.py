"""Normalisation functions: raw strategy payloads → NewsRecord.

One normaliser per strategy.  They are intentionally
**schema-tolerant** (except the ``__NEXT_DATA__`` mapping, which follows
the site's own field names exactly) so that minor markup changes don't
silently drop data.

``__NEXT_DATA__`` telegraph items (as of 2025):
    id, title, content, brief, ctime (epoch seconds), subjects[{subject_name}], shareurl

DOM fallback elements (built by the selector script):
    index, title, content, time, url
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as dtparser
from dateutil import tz as dttz

from .common_types import NewsRecord

logger = logging.getLogger(__name__)

BRIEF_LEN = 200

# Items whose title is shorter than this are navigation/boilerplate.
MIN_TITLE_LEN = 5

# Minimum length for a date string to be considered valid.
# "HH:MM:SS" (the telegraph list's own format) is exactly 8 chars;
# shorter strings like "5" or "12:30" are ambiguously parsed by dateutil.
_MIN_DATE_LEN = 8


# ── Shared helpers ──────────────────────────────────────────────

def _to_epoch(value: Any, tz_name: str = "UTC", now: Optional[float] = None) -> float:
    """Parse a timestamp (epoch number or date/time string) to epoch seconds.

    Returns ``0.0`` for empty, too-short, or unparseable values so that
    the caller can substitute the ingestion time.

    Naive datetimes are interpreted in *tz_name*; a bare time of day is
    anchored to the current date in that zone.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        ts = float(value)
        # Millisecond epochs
        if ts > 1e11:
            ts /= 1000.0
        return ts if ts > 0 else 0.0
    s_stripped = str(value).strip()
    if s_stripped.isdigit():
        return _to_epoch(int(s_stripped), tz_name, now)
    if len(s_stripped) < _MIN_DATE_LEN:
        logger.debug("Date string too short (%d chars): %r", len(s_stripped), s_stripped)
        return 0.0
    zone = dttz.gettz(tz_name) or timezone.utc
    anchor = datetime.fromtimestamp(now, tz=zone) if now else datetime.now(zone)
    try:
        dt = dtparser.parse(
            s_stripped,
            default=anchor.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None),
        )
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=zone)
        return dt.timestamp()
    except (ValueError, OverflowError):
        logger.warning("Unparseable date %r, using ingestion time", s_stripped[:80])
        return 0.0


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _extract_tags(it: Dict[str, Any]) -> List[str]:
    """Tags may be ``subjects[{subject_name}]``, a list of strings, or csv."""
    raw = it.get("subjects") or it.get("tags") or []
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    out: List[str] = []
    if isinstance(raw, list):
        for t in raw:
            if isinstance(t, dict):
                name = t.get("subject_name") or t.get("name") or ""
                if name:
                    out.append(str(name).strip())
            elif isinstance(t, str) and t.strip():
                out.append(t.strip())
    return out


def synthesize_id(now: float, index: int) -> str:
    """Locally-built identity: wall-clock milliseconds + batch index."""
    return f"cls_{int(now * 1000)}_{index}"


# ── Strategy 1: __NEXT_DATA__ ───────────────────────────────────

def normalize_next_data(
    it: Dict[str, Any],
    index: int,
    now: float,
    source_label: str,
    detail_url_base: str,
) -> NewsRecord:
    """Exact mapping of one ``telegraphList`` entry."""
    raw_id = it.get("id")
    has_id = raw_id not in (None, "", 0)
    news_id = str(raw_id) if has_id else synthesize_id(now, index)
    content = _text(it.get("content")) or _text(it.get("brief"))
    brief = _text(it.get("brief")) or content[:BRIEF_LEN]
    ts = _to_epoch(it.get("ctime")) or now
    url = _text(it.get("shareurl"))
    if not url and has_id:
        url = f"{detail_url_base}{raw_id}"
    subjects = it.get("subjects") or []
    tags = [
        _text(s.get("subject_name"))
        for s in subjects
        if isinstance(s, dict) and _text(s.get("subject_name"))
    ]
    return NewsRecord(
        news_id=news_id,
        title=_text(it.get("title")),
        content=content,
        brief=brief,
        published_ts=ts,
        source=source_label,
        tags=tags,
        url=url,
    )


# ── Strategy 2: window.__INITIAL_STATE__ ────────────────────────

def normalize_state_item(
    it: Dict[str, Any],
    index: int,
    now: float,
    source_label: str,
    detail_url_base: str,
    tz_name: str = "UTC",
) -> NewsRecord:
    """Tolerant mapping of one item found in the global state object."""
    raw_id = it.get("id") or it.get("news_id") or it.get("uuid")
    news_id = _text(raw_id)
    content = _text(it.get("content") or it.get("brief") or it.get("descr"))
    brief = _text(it.get("brief") or it.get("summary")) or content[:BRIEF_LEN]
    published = it.get("ctime") or it.get("publish_time") or it.get("time") or it.get("modified_time")
    ts = _to_epoch(published, tz_name, now) or now
    url = _text(it.get("shareurl") or it.get("url") or it.get("link"))
    if not url and news_id:
        url = f"{detail_url_base}{news_id}"
    return NewsRecord(
        news_id=news_id,
        title=_text(it.get("title") or it.get("headline")),
        content=content,
        brief=brief,
        published_ts=ts,
        source=_text(it.get("source")) or source_label,
        tags=_extract_tags(it),
        url=url,
    )


# ── Strategies 3+4: DOM selector fallback ───────────────────────

def normalize_dom_element(
    el: Dict[str, Any],
    now: float,
    source_label: str,
    tz_name: str = "UTC",
) -> Optional[NewsRecord]:
    """Map one scraped element; ``None`` when the title is implausible."""
    title = _text(el.get("title"))
    if len(title) < MIN_TITLE_LEN:
        logger.debug("Skipping DOM element with short title %r", title)
        return None
    try:
        index = int(el.get("index", 0))
    except (TypeError, ValueError):
        index = 0
    content = _text(el.get("content"))
    ts = _to_epoch(el.get("time"), tz_name, now) or now
    return NewsRecord(
        news_id=synthesize_id(now, index),
        title=title,
        content=content,
        brief=content[:BRIEF_LEN],
        published_ts=ts,
        source=source_label,
        tags=[],
        url=_text(el.get("url")),
    )


def fill_defaults(records: List[NewsRecord], now: float, source_label: str) -> List[NewsRecord]:
    """Give every record a timestamp, a source and a brief (in place)."""
    for r in records:
        if not r.published_ts or r.published_ts <= 0:
            r.published_ts = now
        if not r.source:
            r.source = source_label
        if not r.brief and r.content:
            r.brief = r.content[:BRIEF_LEN]
    return records

"""Internal schema shared across the extractor, store and scheduler.

Every extraction strategy normalises its raw payload into a
``NewsRecord`` before the batch reaches the store.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

SENTIMENTS = ("positive", "negative", "neutral")


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class NewsRecord:
    """One telegraph bulletin."""

    news_id: str  # site id, or synthesised ``cls_<ms>_<idx>``; may be empty
    title: str
    content: str
    brief: str
    published_ts: float  # epoch seconds
    source: str
    tags: list[str] = field(default_factory=list)
    url: str = ""

    def copy(self) -> "NewsRecord":
        """Detached copy (the tag list is not shared)."""
        return NewsRecord(
            news_id=self.news_id,
            title=self.title,
            content=self.content,
            brief=self.brief,
            published_ts=self.published_ts,
            source=self.source,
            tags=list(self.tags),
            url=self.url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.news_id,
            "title": self.title,
            "content": self.content,
            "brief": self.brief,
            "publish_time": _iso(self.published_ts),
            "source": self.source,
            "tags": list(self.tags),
            "url": self.url,
        }


@dataclass(frozen=True)
class Analysis:
    """Heuristic annotation of one record.  Never mutated once built."""

    news_id: str
    summary: str = ""
    sentiment: str = "neutral"  # "positive" | "negative" | "neutral"
    keywords: tuple[str, ...] = ()
    industries: tuple[str, ...] = ()
    stocks: tuple[str, ...] = ()
    impact: str = ""
    prediction: str = ""
    confidence: float = 0.0  # 0.0 – 1.0
    analyzed_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for key in ("keywords", "industries", "stocks"):
            d[key] = list(d[key])
        d["analyzed_at"] = _iso(self.analyzed_at)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


@dataclass
class AnalyzedRecord:
    """A record plus its (optional) analysis – the unit cached per cycle."""

    news: NewsRecord
    analysis: Optional[Analysis] = None

    @property
    def news_id(self) -> str:
        return self.news.news_id

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"news": self.news.to_dict()}
        if self.analysis is not None:
            d["analysis"] = self.analysis.to_dict()
        return d

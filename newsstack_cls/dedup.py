"""Identity-keyed de-duplication of an extracted batch."""

from __future__ import annotations

import logging
from typing import Iterable, List

from .common_types import NewsRecord

logger = logging.getLogger(__name__)


def dedupe_records(records: Iterable[NewsRecord]) -> List[NewsRecord]:
    """Drop repeated ``news_id`` values, keeping the first occurrence.

    Order is preserved.  Records with an empty ``news_id`` cannot be
    proven duplicates and always pass through.
    """
    seen: set[str] = set()
    out: List[NewsRecord] = []
    for r in records:
        if not r.news_id:
            out.append(r)
            continue
        if r.news_id in seen:
            logger.debug("Duplicate news id %s (%s) dropped", r.news_id, r.title[:40])
            continue
        seen.add(r.news_id)
        out.append(r)
    return out

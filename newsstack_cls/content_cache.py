"""Per-session URL → full article body cache.

Lives as long as one ``Extractor``; never shared across sessions and
never evicted (a scraping run visits a few dozen URLs at most).  Not
locked: detail pages are fetched serially by the extractor.
"""
from __future__ import annotations

from typing import Optional


class ContentCache:
    def __init__(self) -> None:
        self._bodies: dict[str, str] = {}

    def get(self, url: str) -> Optional[str]:
        return self._bodies.get(url)

    def put(self, url: str, content: str) -> None:
        if url and content:
            self._bodies[url] = content

    def __contains__(self, url: object) -> bool:
        return url in self._bodies

    def __len__(self) -> int:
        return len(self._bodies)

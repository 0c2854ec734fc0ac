"""New-record sinks for ``NewsScheduler.set_new_news_callback``.

``log_new_records`` just logs.  ``WebhookNotifier`` posts a short text
digest to a Discord-compatible webhook (``{"content": ...}``); it owns
its HTTP timeout so a slow endpoint cannot stall the scheduler thread
for longer than ``timeout_s``.  Delivery failures are logged, never
raised.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List

import httpx

from .common_types import AnalyzedRecord

logger = logging.getLogger(__name__)

# Discord rejects message bodies longer than 2000 characters.
_MAX_MESSAGE_CHARS = 1900
_MAX_TITLE_CHARS = 120


def _mask_url(url: str) -> str:
    """Mask query params (and webhook tokens) for safe logging."""
    base = url.split("?")[0]
    parts = base.rstrip("/").split("/")
    if len(parts) > 4:
        parts[-1] = "***"
    return "/".join(parts) + ("?***" if "?" in url else "")


def log_new_records(items: List[AnalyzedRecord]) -> None:
    logger.info("Detected %d new telegraph items", len(items))
    for it in items:
        logger.info("New item: %s", it.news.title)
        if it.analysis is not None:
            logger.info(
                "  - sentiment: %s, industries: %s, prediction: %s",
                it.analysis.sentiment,
                list(it.analysis.industries),
                it.analysis.prediction,
            )


def format_digest(items: List[AnalyzedRecord]) -> str:
    """Newest-first bullet list, trimmed to fit one webhook message."""
    lines = [f"**{len(items)} new telegraph item(s)**"]
    for it in items:
        stamp = datetime.fromtimestamp(it.news.published_ts, tz=timezone.utc).strftime("%H:%M")
        title = (it.news.title or it.news.brief or "")[:_MAX_TITLE_CHARS]
        line = f"• {stamp} UTC {title}"
        if it.analysis is not None and it.analysis.sentiment != "neutral":
            line += f" [{it.analysis.sentiment}]"
        if sum(len(x) + 1 for x in lines) + len(line) + 2 > _MAX_MESSAGE_CHARS:
            lines.append("…")
            break
        lines.append(line)
    return "\n".join(lines)


class WebhookNotifier:
    """Callable sink posting new items to a webhook URL."""

    def __init__(self, url: str, timeout_s: float = 10.0) -> None:
        if not url:
            raise ValueError("webhook url is empty")
        self.url = url
        self.client = httpx.Client(
            timeout=timeout_s,
            headers={"User-Agent": "newsstack-cls/1.0 (notifier)"},
        )
        self.sent_count = 0
        self.failed_count = 0
        self.last_sent_ts = 0.0

    def __call__(self, items: List[AnalyzedRecord]) -> None:
        if not items:
            return
        self.send(format_digest(items))

    def send(self, text: str) -> bool:
        """POST *text*; returns True on a 2xx response."""
        try:
            r = self.client.post(self.url, json={"content": text})
        except httpx.HTTPError as exc:
            self.failed_count += 1
            logger.warning("Webhook %s failed: %s", _mask_url(self.url), type(exc).__name__)
            return False
        if r.status_code >= 400:
            self.failed_count += 1
            logger.warning("Webhook %s HTTP %d", _mask_url(self.url), r.status_code)
            return False
        self.sent_count += 1
        self.last_sent_ts = time.time()
        logger.info("Webhook notification sent (%d chars)", len(text))
        return True

    def close(self) -> None:
        self.client.close()

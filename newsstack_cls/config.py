"""Global configuration for the CLS telegraph poller.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_flag(key: str, default: bool) -> bool:
    return os.getenv(key, "1" if default else "0") == "1"


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Source ──────────────────────────────────────────────────
    telegraph_url: str = field(default_factory=lambda: os.getenv("CLS_TELEGRAPH_URL", "https://www.cls.cn/telegraph"))
    detail_url_base: str = field(default_factory=lambda: os.getenv("CLS_DETAIL_URL_BASE", "https://www.cls.cn/detail/"))
    item_url_base: str = field(default_factory=lambda: os.getenv("CLS_ITEM_URL_BASE", "https://www.cls.cn/telegraph/"))
    source_label: str = field(default_factory=lambda: os.getenv("CLS_SOURCE_LABEL", "财联社"))
    # Naive page timestamps are interpreted in this zone.
    source_tz: str = field(default_factory=lambda: os.getenv("CLS_SOURCE_TZ", "Asia/Shanghai"))

    # ── Scheduler cadence ───────────────────────────────────────
    poll_interval_s: float = field(default_factory=lambda: _env_float("POLL_INTERVAL_S", 300.0))
    cycle_timeout_s: float = field(default_factory=lambda: _env_float("CYCLE_TIMEOUT_S", 120.0))
    cycle_fetch_limit: int = field(default_factory=lambda: _env_int("CYCLE_FETCH_LIMIT", 20))
    analyze_in_cycle: bool = field(default_factory=lambda: _env_flag("ANALYZE_IN_CYCLE", False))

    # ── Store ───────────────────────────────────────────────────
    store_capacity: int = field(default_factory=lambda: _env_int("STORE_CAPACITY", 100))

    # ── Page driver ─────────────────────────────────────────────
    page_timeout_s: float = field(default_factory=lambda: _env_float("PAGE_TIMEOUT_S", 60.0))
    page_settle_s: float = field(default_factory=lambda: _env_float("PAGE_SETTLE_S", 5.0))
    detail_settle_s: float = field(default_factory=lambda: _env_float("DETAIL_SETTLE_S", 2.0))
    headless: bool = field(default_factory=lambda: _env_flag("HEADLESS", True))
    browser_bin_path: str = field(default_factory=lambda: os.getenv("BROWSER_BIN_PATH", ""))

    # ── Detail-page rate shaping ────────────────────────────────
    enable_detail_delay: bool = field(default_factory=lambda: _env_flag("ENABLE_DETAIL_DELAY", True))
    detail_delay_min_s: float = field(default_factory=lambda: _env_float("DETAIL_DELAY_MIN_S", 1.0))
    detail_delay_max_s: float = field(default_factory=lambda: _env_float("DETAIL_DELAY_MAX_S", 2.0))

    # ── Notifications (repr=False to prevent accidental logging) ──
    webhook_url: str = field(default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_URL", ""), repr=False)
    webhook_timeout_s: float = field(default_factory=lambda: _env_float("NOTIFY_WEBHOOK_TIMEOUT_S", 10.0))

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def detail_delay_range(self) -> tuple[float, float]:
        """``(low, high)`` bounds for the pre-detail delay, ordered."""
        lo = max(0.0, self.detail_delay_min_s)
        hi = max(lo, self.detail_delay_max_s)
        return lo, hi

"""Tests for newsstack_cls.scheduler: lifecycle, delta detection, cache."""
from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from newsstack_cls.analyzer import NewsAnalyzer
from newsstack_cls.common_types import AnalyzedRecord, NewsRecord
from newsstack_cls.config import Config
from newsstack_cls.errors import ExtractionError
from newsstack_cls.scheduler import BatchCache, NewsScheduler, find_new_items


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _rec(news_id: str, ts: float = 1.0, title: str = "") -> NewsRecord:
    return NewsRecord(
        news_id=news_id,
        title=title or f"电报 {news_id}",
        content=f"内容 {news_id}",
        brief="",
        published_ts=ts,
        source="财联社",
    )


def _cfg(**overrides) -> Config:
    base = dict(cycle_timeout_s=5.0, cycle_fetch_limit=20, poll_interval_s=0.05)
    base.update(overrides)
    return Config(**base)


def _extractor(*batches, cfg: Config | None = None) -> MagicMock:
    """Mock extractor returning *batches* in turn (last one repeats)."""
    ex = MagicMock()
    ex.cfg = cfg or _cfg()
    seq = list(batches)

    def _fetch(limit, fetch_detail=False, timeout_s=None):
        item = seq.pop(0) if len(seq) > 1 else seq[0]
        if isinstance(item, Exception):
            raise item
        return list(item)

    ex.fetch_batch.side_effect = _fetch
    return ex


def _wait_for(cond, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return cond()


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


class TestFindNewItems:
    def test_previous_empty_means_everything_new(self):
        cur = [AnalyzedRecord(_rec("1")), AnalyzedRecord(_rec("2"))]
        assert find_new_items(cur, []) == cur

    def test_only_unseen_ids(self):
        prev = [AnalyzedRecord(_rec("1")), AnalyzedRecord(_rec("2"))]
        cur = [AnalyzedRecord(_rec("3")), AnalyzedRecord(_rec("2")), AnalyzedRecord(_rec("4"))]
        assert [it.news_id for it in find_new_items(cur, prev)] == ["3", "4"]

    def test_no_new_ids_empty_delta(self):
        prev = [AnalyzedRecord(_rec("1")), AnalyzedRecord(_rec("2"))]
        cur = [AnalyzedRecord(_rec("2", title="updated"))]
        assert find_new_items(cur, prev) == []


class TestBatchCache:
    def test_set_get_latest(self):
        cache = BatchCache()
        assert cache.get() == ([], 0.0)
        items = [AnalyzedRecord(_rec(str(i))) for i in range(5)]
        cache.set(items)
        got, ts = cache.get()
        assert [it.news_id for it in got] == ["0", "1", "2", "3", "4"]
        assert ts > 0
        assert len(cache.latest(2)) == 2
        assert len(cache.latest(0)) == 5
        assert len(cache.latest(99)) == 5

    def test_get_returns_copy(self):
        cache = BatchCache()
        cache.set([AnalyzedRecord(_rec("1"))])
        got, _ = cache.get()
        got.clear()
        assert len(cache.get()[0]) == 1


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------


class TestCycles:
    def test_first_cycle_reports_all_records(self):
        ex = _extractor([_rec("1", 3), _rec("2", 2), _rec("3", 1)])
        cb = MagicMock()
        sched = NewsScheduler(ex, interval_s=60)
        sched.set_new_news_callback(cb)
        new = sched.force_update()
        assert cb.call_count == 1
        assert [it.news_id for it in cb.call_args[0][0]] == ["1", "2", "3"]
        assert len(new) == 3
        ex.fetch_batch.assert_called_with(20, fetch_detail=False, timeout_s=None)

    def test_second_cycle_reports_only_new(self):
        ex = _extractor([_rec("1")], [_rec("2", 2), _rec("1")])
        cb = MagicMock()
        sched = NewsScheduler(ex, interval_s=60)
        sched.set_new_news_callback(cb)
        sched.force_update()
        sched.force_update()
        assert cb.call_count == 2
        assert [it.news_id for it in cb.call_args_list[1][0][0]] == ["2"]
        assert sched.get_cache_info()[0] == 2

    def test_no_callback_when_nothing_new(self):
        ex = _extractor([_rec("1")], [_rec("1")])
        cb = MagicMock()
        sched = NewsScheduler(ex, interval_s=60)
        sched.set_new_news_callback(cb)
        sched.force_update()
        sched.force_update()
        assert cb.call_count == 1

    def test_empty_batch_keeps_cache(self):
        ex = _extractor([_rec("1")], [])
        sched = NewsScheduler(ex, interval_s=60)
        sched.force_update()
        assert sched.force_update() == []
        assert [it.news_id for it in sched.get_cached_news()] == ["1"]

    def test_force_update_propagates_errors(self):
        ex = _extractor(ExtractionError("no data extracted"))
        sched = NewsScheduler(ex, interval_s=60)
        with pytest.raises(ExtractionError):
            sched.force_update()

    def test_force_update_failure_recorded_then_cleared(self):
        ex = _extractor(ExtractionError("no data extracted"), [_rec("1")])
        sched = NewsScheduler(ex, interval_s=60)
        with pytest.raises(ExtractionError):
            sched.force_update()
        assert sched.last_cycle_status == "ERROR"
        assert "no data extracted" in sched.last_cycle_error
        sched.force_update()
        assert sched.last_cycle_error == ""
        assert sched.last_cycle_status == "1 items, 1 new"

    def test_failure_status_written_under_cycle_lock(self):
        ex = _extractor(RuntimeError("render failed"))
        sched = NewsScheduler(ex, interval_s=60)
        errors = []

        def _update():
            try:
                sched.force_update()
            except RuntimeError as exc:
                errors.append(exc)

        with sched._cycle_lock:
            t = threading.Thread(target=_update)
            t.start()
            time.sleep(0.05)
            assert sched.last_cycle_status == "—"
            assert sched.last_cycle_error == ""
        t.join(timeout=2)
        assert len(errors) == 1
        assert sched.last_cycle_status == "ERROR"
        assert sched.last_cycle_ts > 0

    def test_analyzer_annotates_when_enabled(self):
        ex = _extractor([_rec("1", title="央行宣布降息，股市上涨")], cfg=_cfg(analyze_in_cycle=True))
        sched = NewsScheduler(ex, interval_s=60, analyzer=NewsAnalyzer())
        sched.force_update()
        (item,) = sched.get_cached_news()
        assert item.analysis is not None
        assert item.analysis.sentiment == "positive"

    def test_analyzer_skipped_when_disabled(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=60, analyzer=NewsAnalyzer())
        sched.force_update()
        assert sched.get_cached_news()[0].analysis is None

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            NewsScheduler(_extractor([]), interval_s=0)

    def test_concurrent_force_updates_never_overlap(self):
        active = 0
        max_active = 0
        guard = threading.Lock()
        ex = MagicMock()
        ex.cfg = _cfg()

        def _fetch(limit, fetch_detail=False, timeout_s=None):
            nonlocal active, max_active
            with guard:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.02)
            with guard:
                active -= 1
            return [_rec("1")]

        ex.fetch_batch.side_effect = _fetch
        sched = NewsScheduler(ex, interval_s=60)
        threads = [threading.Thread(target=sched.force_update) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert max_active == 1
        assert ex.fetch_batch.call_count == 5


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_runs_first_cycle_synchronously(self):
        ex = _extractor([_rec("1"), _rec("2"), _rec("3")])
        cb = MagicMock()
        sched = NewsScheduler(ex, interval_s=60)
        sched.set_new_news_callback(cb)
        sched.start(timeout_s=1.5)
        try:
            assert sched.is_running()
            assert cb.call_count == 1
            assert len(cb.call_args[0][0]) == 3
            ex.fetch_batch.assert_called_with(20, fetch_detail=False, timeout_s=1.5)
        finally:
            sched.stop()

    def test_background_ticks_use_cycle_timeout(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.start()
        try:
            assert _wait_for(lambda: ex.fetch_batch.call_count >= 3)
            assert ex.fetch_batch.call_args == ((20,), {"fetch_detail": False, "timeout_s": 5.0})
        finally:
            sched.stop()

    def test_start_idempotent(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=60)
        sched.start()
        thread1 = sched._thread
        sched.start()
        assert sched._thread is thread1
        assert ex.fetch_batch.call_count == 1
        sched.stop()

    def test_stop_twice_is_noop(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=60)
        sched.start()
        sched.stop()
        sched.stop()
        assert sched.is_running() is False

    def test_stop_before_start_is_noop(self):
        sched = NewsScheduler(_extractor([_rec("1")]), interval_s=60)
        sched.stop()
        assert sched.is_running() is False

    def test_loop_exits_after_stop(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.start()
        sched.stop()
        assert _wait_for(lambda: not sched.is_alive)
        calls = ex.fetch_batch.call_count
        time.sleep(0.2)
        assert ex.fetch_batch.call_count == calls

    def test_failed_first_cycle_still_starts(self):
        ex = _extractor(ExtractionError("no data extracted"), [_rec("1")])
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.start()
        try:
            assert sched.is_running()
            assert _wait_for(lambda: sched.get_cache_info()[0] == 1)
        finally:
            sched.stop()

    def test_tick_errors_do_not_kill_loop(self):
        ex = _extractor([_rec("1")], RuntimeError("browser gone"), RuntimeError("browser gone"), [_rec("2")])
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.start()
        try:
            assert _wait_for(lambda: ex.fetch_batch.call_count >= 4)
            assert sched.is_alive
            assert _wait_for(lambda: sched.last_cycle_error == "")
        finally:
            sched.stop()

    def test_tick_error_recorded(self):
        ex = _extractor([_rec("1")], RuntimeError("render failed"))
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.start()
        try:
            assert _wait_for(lambda: sched.last_cycle_status == "ERROR")
            assert "render failed" in sched.last_cycle_error
        finally:
            sched.stop()

    def test_callback_exception_does_not_kill_loop(self):
        ex = _extractor([_rec("1")], [_rec("2")], [_rec("3")], [_rec("4")])
        cb = MagicMock(side_effect=[None, ValueError("sink broke"), None, None])
        sched = NewsScheduler(ex, interval_s=0.05)
        sched.set_new_news_callback(cb)
        sched.start()
        try:
            assert _wait_for(lambda: cb.call_count >= 3)
            assert sched.is_alive
        finally:
            sched.stop()

    def test_restart_after_stop(self):
        ex = _extractor([_rec("1")])
        sched = NewsScheduler(ex, interval_s=60)
        sched.start()
        sched.stop()
        sched.start()
        try:
            assert sched.is_running()
            assert ex.fetch_batch.call_count == 2
        finally:
            sched.stop()

    def test_status_readable_during_cycle(self):
        release = threading.Event()
        entered = threading.Event()
        ex = MagicMock()
        ex.cfg = _cfg()

        def _fetch(limit, fetch_detail=False, timeout_s=None):
            entered.set()
            release.wait(2)
            return [_rec("1")]

        ex.fetch_batch.side_effect = _fetch
        sched = NewsScheduler(ex, interval_s=60)
        t = threading.Thread(target=sched.force_update)
        t.start()
        try:
            assert entered.wait(2)
            assert sched.is_running() is False
            assert sched.get_cache_info() == (0, 0.0)
        finally:
            release.set()
            t.join(timeout=2)

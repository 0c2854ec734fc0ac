"""Page driver seam: the only place that touches a real browser.

The extractor talks to a ``PageDriver``.  Tests substitute a fake that
returns canned script payloads; production uses ``PlaywrightPageDriver``.

Playwright's sync API is bound to the thread that started it, while the
scheduler calls in from both the caller's thread and its own daemon
thread.  ``PlaywrightPageDriver`` therefore owns a single worker thread
and marshals every call onto it.  A call timeout abandons the *wait*;
whatever the browser was doing keeps running until Playwright's own
timeout fires.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, Protocol, TypeVar

from .errors import DriverError, NavigationError, RenderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra wall time granted to the worker on top of Playwright's own timeout
# so that its (more descriptive) error wins the race.
_RESULT_GRACE_S = 5.0


class PageDriver(Protocol):
    """Minimal browser capability consumed by the extractor.

    Every method takes ``timeout_s``; implementations raise
    ``NavigationError`` / ``RenderTimeoutError`` (subclasses of
    ``DriverError``) on failure.
    """

    def navigate(self, url: str, timeout_s: float) -> None: ...

    def wait_load(self, timeout_s: float) -> None: ...

    def evaluate(self, script: str, timeout_s: float) -> str: ...

    def html(self, timeout_s: float) -> str: ...

    def close(self) -> None: ...


class PlaywrightPageDriver:
    """Chromium page driven through ``playwright.sync_api``.

    Parameters
    ----------
    headless : bool
        Launch without a visible window.
    executable_path : str
        Custom browser binary; empty means Playwright's bundled Chromium.
    """

    def __init__(self, headless: bool = True, executable_path: str = "") -> None:
        self._headless = headless
        self._executable_path = executable_path or None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cls-browser")
        self._lock = threading.Lock()
        self._closed = False
        # Owned by the worker thread only
        self._pw: Any = None
        self._browser: Any = None
        self._page: Any = None

    # ── Worker-thread internals ─────────────────────────────────

    def _ensure_page(self) -> Any:
        if self._page is None:
            from playwright.sync_api import sync_playwright

            from playwright.sync_api import Error as PlaywrightError

            try:
                self._pw = sync_playwright().start()
                self._browser = self._pw.chromium.launch(
                    headless=self._headless,
                    executable_path=self._executable_path,
                )
                self._page = self._browser.new_page()
            except PlaywrightError as exc:
                raise DriverError(f"browser launch failed: {exc}") from exc
            logger.info("Browser launched (headless=%s)", self._headless)
        return self._page

    def _call(self, label: str, fn: Callable[[Any], T], timeout_s: float, url: str = "") -> T:
        with self._lock:
            if self._closed:
                raise DriverError("page driver is closed", url=url)
            future = self._executor.submit(lambda: fn(self._ensure_page()))
        try:
            return future.result(timeout=max(timeout_s, 0.0) + _RESULT_GRACE_S)
        except FutureTimeout:
            raise RenderTimeoutError(f"{label} timed out after {timeout_s:.1f}s", url=url) from None

    @staticmethod
    def _translate(label: str, exc: Exception, url: str, nav: bool) -> DriverError:
        from playwright.sync_api import TimeoutError as PlaywrightTimeout

        if isinstance(exc, PlaywrightTimeout):
            return RenderTimeoutError(f"{label} timed out: {exc}", url=url)
        if nav:
            return NavigationError(f"{label} failed: {exc}", url=url)
        return DriverError(f"{label} failed: {exc}", url=url)

    # ── PageDriver ──────────────────────────────────────────────

    def navigate(self, url: str, timeout_s: float) -> None:
        def _go(page: Any) -> None:
            from playwright.sync_api import Error as PlaywrightError

            try:
                page.goto(url, timeout=timeout_s * 1000, wait_until="domcontentloaded")
            except PlaywrightError as exc:
                raise self._translate("navigate", exc, url, nav=True) from exc

        self._call("navigate", _go, timeout_s, url=url)

    def wait_load(self, timeout_s: float) -> None:
        def _wait(page: Any) -> None:
            from playwright.sync_api import Error as PlaywrightError

            try:
                page.wait_for_load_state("load", timeout=timeout_s * 1000)
            except PlaywrightError as exc:
                raise self._translate("wait_load", exc, page.url, nav=False) from exc

        self._call("wait_load", _wait, timeout_s)

    def evaluate(self, script: str, timeout_s: float) -> str:
        def _eval(page: Any) -> str:
            from playwright.sync_api import Error as PlaywrightError

            try:
                result = page.evaluate(script)
            except PlaywrightError as exc:
                raise self._translate("evaluate", exc, page.url, nav=False) from exc
            if result is None:
                return ""
            if isinstance(result, str):
                return result
            return json.dumps(result, ensure_ascii=False)

        return self._call("evaluate", _eval, timeout_s)

    def html(self, timeout_s: float) -> str:
        def _content(page: Any) -> str:
            from playwright.sync_api import Error as PlaywrightError

            try:
                return page.content()
            except PlaywrightError as exc:
                raise self._translate("html", exc, page.url, nav=False) from exc

        return self._call("html", _content, timeout_s)

    def close(self) -> None:
        """Shut the browser down (idempotent)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        def _shutdown() -> None:
            for obj, meth in ((self._page, "close"), (self._browser, "close"), (self._pw, "stop")):
                if obj is None:
                    continue
                try:
                    getattr(obj, meth)()
                except Exception as exc:
                    logger.debug("Browser %s failed: %s", meth, exc)
            self._page = self._browser = self._pw = None

        try:
            self._executor.submit(_shutdown).result(timeout=30)
        except FutureTimeout:
            logger.warning("Browser shutdown timed out")
        finally:
            self._executor.shutdown(wait=False)


def make_driver(headless: bool = True, executable_path: str = "") -> PageDriver:
    """Factory used by the service layer; tests inject their own."""
    return PlaywrightPageDriver(headless=headless, executable_path=executable_path)


def optional_close(driver: Optional[PageDriver]) -> None:
    if driver is None:
        return
    try:
        driver.close()
    except Exception as exc:
        logger.warning("Page driver close failed: %s", exc)

"""Headless browser session lifecycle for the partner portal scraper.

One :class:`BrowserSession` owns one Playwright driver, one Chromium process,
one browser context and one page. Sessions are never shared between scrape
runs; the orchestrator creates a fresh one per run and always closes it in a
``finally`` block.
"""
from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from .errors import (
    ElementNotFoundError,
    InitializationError,
    NavigationError,
    ScraperTimeoutError,
)
from .logging_utils import _scraper_event
from .models import BrowserConfig, SessionState
from .utils import log_line

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
]

# [page-info text, card count, no-data shown] for the search results area.
_RESULTS_STATE_JS = """([info, cards, noData]) => {
  const el = document.querySelector(info);
  return [
    el ? (el.textContent || '').trim() : '',
    document.querySelectorAll(cards).length,
    !!document.querySelector(noData),
  ];
}"""

# True once the results area shows results and differs from ``before``.
_RESULTS_READY_JS = (
    "([info, cards, noData, before]) => {"
    " const state = (" + _RESULTS_STATE_JS + ")([info, cards, noData]);"
    r" const ready = /Page\s+\d+\s+of\s+\d+/i.test(state[0]) || state[1] > 0 || state[2];"
    " return ready && JSON.stringify(state) !== JSON.stringify(before); }"
)

# "selectedIndex:opt1|opt2|..." per <select>, null when absent.
_DROPDOWN_STATE_JS = """(sels) => sels.map((sel) => {
  const el = document.querySelector(sel);
  if (!el) return null;
  return el.selectedIndex + ':' + Array.from(el.options).map((o) => o.text.trim()).join('|');
})"""

_DROPDOWN_CHANGED_JS = (
    "([sels, before]) => JSON.stringify((" + _DROPDOWN_STATE_JS + ")(sels))"
    " !== JSON.stringify(before)"
)

ResultsState = Tuple[str, int, bool]


class BrowserSession:
    """Explicit lifecycle wrapper around a single Playwright page."""

    def __init__(self, config: Optional[BrowserConfig] = None) -> None:
        self.config = config or BrowserConfig()
        self.state = SessionState.UNINITIALIZED
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self._page is not None

    def initialize(self) -> None:
        """Launch the browser and open the page. No-op when already ready."""

        if self.is_ready:
            log_line("[SESSION] Browser already initialized; skipping launch.")
            return

        width, height = self.config.viewport
        _scraper_event(
            "session",
            step="launch",
            headless=self.config.headless,
            timeout_ms=self.config.timeout_ms,
            viewport=f"{width}x{height}",
        )
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.config.headless,
                slow_mo=self.config.slow_mo_ms,
                args=LAUNCH_ARGS,
            )
            self._context = self._browser.new_context(
                viewport={"width": width, "height": height},
                user_agent=self.config.user_agent,
                extra_http_headers={"Accept-Language": self.config.accept_language},
            )
            self._context.set_default_timeout(self.config.timeout_ms)
            self._context.set_default_navigation_timeout(self.config.timeout_ms)
            self._page = self._context.new_page()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[SESSION][ERROR] Browser launch failed: {exc}")
            self._release()
            self.state = SessionState.UNINITIALIZED
            raise InitializationError("Failed to initialize browser", exc) from exc

        self.state = SessionState.READY
        log_line("[SESSION] Browser initialized successfully.")

    def close(self) -> None:
        """Release the browser. Safe to call repeatedly and from ``finally``."""

        was_open = any(
            obj is not None
            for obj in (self._page, self._context, self._browser, self._playwright)
        )
        self._release()
        if self.state is not SessionState.UNINITIALIZED or was_open:
            self.state = SessionState.CLOSED
        if was_open:
            log_line("[SESSION] Browser closed.")

    def _release(self) -> None:
        for label, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                closer()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[SESSION][WARN] Error closing {label}: {exc}")
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    def __enter__(self) -> "BrowserSession":
        self.initialize()
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    @property
    def page(self) -> Page:
        if not self.is_ready or self._page is None:
            raise InitializationError("Browser not initialized. Call initialize() first.")
        return self._page

    def _timeout(self, timeout_ms: Optional[int]) -> int:
        return int(timeout_ms) if timeout_ms else self.config.timeout_ms

    # ------------------------------------------------------------------
    # Navigation and waits
    # ------------------------------------------------------------------

    @property
    def current_url(self) -> str:
        return self.page.url

    def navigate_to(self, url: str, wait_until: str = "networkidle") -> None:
        page = self.page
        _scraper_event("nav", step="goto", url=url, wait_until=wait_until)
        try:
            page.goto(url, wait_until=wait_until, timeout=self.config.timeout_ms)
        except PWTimeout as exc:
            log_line(f"[SESSION][ERROR][NAV] goto({url!r}) timed out: {exc}")
            raise NavigationError(f"Timed out navigating to {url}", exc) from exc
        except PWError as exc:
            log_line(f"[SESSION][ERROR][NAV] goto({url!r}) failed: {exc}")
            raise NavigationError(f"Failed to navigate to {url}", exc) from exc

    def wait_for_selector(
        self, selector: str, timeout_ms: Optional[int] = None, visible: bool = False
    ) -> None:
        page = self.page
        try:
            page.wait_for_selector(
                selector,
                timeout=self._timeout(timeout_ms),
                state="visible" if visible else "attached",
            )
        except (PWTimeout, PWError) as exc:
            raise ElementNotFoundError(f"Element not found: {selector}", exc) from exc

    def wait_for_condition(
        self, expression: str, arg: Any = None, timeout_ms: Optional[int] = None
    ) -> None:
        """Poll a JS predicate until it is truthy or the timeout elapses."""

        page = self.page
        try:
            page.wait_for_function(expression, arg=arg, timeout=self._timeout(timeout_ms))
        except PWTimeout as exc:
            raise ScraperTimeoutError("Condition not met before timeout", exc) from exc

    def wait_for_text(self, selector: str, text: str, timeout_ms: Optional[int] = None) -> None:
        self.wait_for_condition(
            "([sel, needle]) => { const el = document.querySelector(sel);"
            " return !!el && (el.textContent || '').includes(needle); }",
            [selector, text],
            timeout_ms,
        )

    def wait_for_checked(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        self.wait_for_condition(
            "(sel) => { const el = document.querySelector(sel); return !!el && el.checked; }",
            selector,
            timeout_ms,
        )

    def wait_for_network_idle(self, timeout_ms: Optional[int] = None) -> None:
        page = self.page
        try:
            page.wait_for_load_state("networkidle", timeout=self._timeout(timeout_ms))
        except PWTimeout as exc:
            raise ScraperTimeoutError("Network did not become idle", exc) from exc

    def results_state(self, page_info: str, cards: str, no_data: str) -> ResultsState:
        text, count, shown = self.page.evaluate(_RESULTS_STATE_JS, [page_info, cards, no_data])
        return text, int(count), bool(shown)

    def wait_for_results(
        self,
        page_info: str,
        cards: str,
        no_data: str,
        previous: ResultsState,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """Wait until the results area is populated and differs from ``previous``.

        An empty ``#page-info`` placeholder from the page template does not
        count as results: the page-info text must read ``Page x of y``, or
        cards or the no-data message must be present.
        """

        self.wait_for_condition(
            _RESULTS_READY_JS, [page_info, cards, no_data, list(previous)], timeout_ms
        )

    def dropdown_state(self, selectors: Sequence[str]) -> List[Optional[str]]:
        return list(self.page.evaluate(_DROPDOWN_STATE_JS, list(selectors)))

    def wait_for_dropdown_change(
        self,
        selectors: Sequence[str],
        previous: Sequence[Optional[str]],
        timeout_ms: Optional[int] = None,
    ) -> None:
        """Wait until the options or selection of any ``selectors`` change."""

        self.wait_for_condition(
            _DROPDOWN_CHANGED_JS, [list(selectors), list(previous)], timeout_ms
        )

    def pause(self, seconds: float) -> None:
        """Fixed delay; only used as a fallback when no signal is observable."""

        if seconds is None or seconds <= 0:
            return
        if self._page is not None and not self._page.is_closed():
            self._page.wait_for_timeout(int(seconds * 1000))
        else:
            time.sleep(seconds)

    # ------------------------------------------------------------------
    # DOM reads
    # ------------------------------------------------------------------

    def content(self) -> str:
        return self.page.content()

    def exists(self, selector: str) -> bool:
        return self.count(selector) > 0

    def count(self, selector: str) -> int:
        return self.page.locator(selector).count()

    def text_of(self, selector: str) -> Optional[str]:
        locator = self.page.locator(selector)
        if locator.count() == 0:
            return None
        return (locator.first.text_content() or "").strip()

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        self.page.locator(selector).first.click(timeout=self._timeout(timeout_ms))

    def click_by_text(self, selector: str, text: str) -> bool:
        """Click the first ``selector`` match whose visible text equals ``text``."""

        pattern = re.compile(rf"^\s*{re.escape(text)}\s*$")
        locator = self.page.locator(selector).filter(has_text=pattern)
        if locator.count() == 0:
            return False
        locator.first.click()
        return True

    def click_and_wait_for_navigation(
        self, selector: str, timeout_ms: Optional[int] = None
    ) -> None:
        page = self.page
        try:
            with page.expect_navigation(
                wait_until="networkidle", timeout=self._timeout(timeout_ms)
            ):
                page.locator(selector).first.click()
        except PWTimeout as exc:
            raise ScraperTimeoutError(f"No navigation after clicking {selector}", exc) from exc

    def type_text(self, selector: str, text: str, delay_ms: int = 0) -> None:
        self.page.locator(selector).first.press_sequentially(text, delay=delay_ms)

    def fill(self, selector: str, text: str) -> None:
        self.page.locator(selector).first.fill(text)

    def select_option(self, selector: str, label: str) -> None:
        self.page.locator(selector).first.select_option(label=label)

    def press(self, key: str) -> None:
        self.page.keyboard.press(key)

    # ------------------------------------------------------------------
    # Cookies and diagnostics
    # ------------------------------------------------------------------

    def _require_context(self) -> BrowserContext:
        if not self.is_ready or self._context is None:
            raise InitializationError("Browser not initialized. Call initialize() first.")
        return self._context

    def get_cookies(self) -> List[Dict[str, Any]]:
        return [dict(cookie) for cookie in self._require_context().cookies()]

    def set_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self._require_context().add_cookies(cookies)

    def take_screenshot(self, path: Path | str, full_page: bool = True) -> Optional[Path]:
        """Best-effort screenshot; never raises."""

        target = Path(path)
        try:
            page = self.page
            target.parent.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(target), full_page=full_page)
            log_line(f"[SESSION] Saved debug screenshot -> {target}")
            return target
        except Exception as exc:  # noqa: BLE001
            log_line(f"[SESSION][WARN] Failed to save screenshot {target}: {exc}")
            return None


__all__ = ["BrowserSession", "LAUNCH_ARGS", "ResultsState"]

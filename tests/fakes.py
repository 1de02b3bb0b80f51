"""Test doubles for the browser session and the portal client."""
from __future__ import annotations

import importlib
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from bs4 import BeautifulSoup

from catalog.scraper import config, db, utils
from catalog.scraper.errors import (
    ElementNotFoundError,
    LoginError,
    NavigationError,
    ScraperTimeoutError,
    ScrapingError,
)
from catalog.scraper.models import (
    FilterFields,
    PaginationInfo,
    Program,
    ScrapeResult,
    SessionState,
    TermOption,
)

Handler = Callable[["FakeSession"], None]

_PAGE_INFO = re.compile(r"Page\s+\d+\s+of\s+\d+", re.IGNORECASE)


def configure_temp_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    db_path = data_dir / "catalog.db"

    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    monkeypatch.setattr(config, "LOG_DIR", data_dir / "logs")
    monkeypatch.setattr(config, "LOG_FILE", data_dir / "logs" / "latest.log")
    monkeypatch.setattr(config, "SCREENSHOT_DIR", data_dir / "screenshots")
    monkeypatch.setattr(config, "EXPORTS_DIR", data_dir / "exports")
    monkeypatch.setattr(config, "DB_PATH", db_path)
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)
    monkeypatch.setattr(db, "DB_PATH", db_path)
    monkeypatch.setattr(utils, "_LOGGER_INITIALISED", False)
    return db_path


def reload_main_module():
    if "catalog.main" in sys.modules:
        sys.modules["catalog.main"].CONN.close()
        del sys.modules["catalog.main"]
    return importlib.import_module("catalog.main")


class FakeSession:
    """Scripted stand-in for :class:`BrowserSession`.

    The page is a plain HTML string; reads are answered with BeautifulSoup
    and interactions are recorded in ``actions``. ``click_handlers`` (keyed by
    selector), ``text_click_handlers`` (keyed by ``(selector, text)``) and
    ``select_handlers`` let a test swap the page when something is clicked
    or a dropdown option is chosen.
    """

    def __init__(self, html: str = "", url: str = "about:blank") -> None:
        self.html = html
        self.url = url
        self.routes: Dict[str, str] = {}
        self.click_handlers: Dict[str, Handler] = {}
        self.text_click_handlers: Dict[Tuple[str, str], Handler] = {}
        self.select_handlers: Dict[str, Handler] = {}
        self.actions: List[Tuple[Any, ...]] = []
        self.pauses: List[float] = []
        self.screenshots: List[str] = []
        self.checked: set = set()
        self.navigation_timeout = False
        self.state = SessionState.READY

    # lifecycle
    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    def initialize(self) -> None:
        self.state = SessionState.READY

    def close(self) -> None:
        self.actions.append(("close",))
        self.state = SessionState.CLOSED

    # navigation and waits
    @property
    def current_url(self) -> str:
        return self.url

    def _soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html, "html5lib")

    def navigate_to(self, url: str, wait_until: str = "networkidle") -> None:
        self.actions.append(("goto", url))
        if url not in self.routes:
            raise NavigationError(f"Failed to navigate to {url}")
        self.url = url
        self.html = self.routes[url]

    def wait_for_selector(
        self, selector: str, timeout_ms: Optional[int] = None, visible: bool = False
    ) -> None:
        if self._soup().select_one(selector) is None:
            raise ElementNotFoundError(f"Element not found: {selector}")

    def wait_for_text(self, selector: str, text: str, timeout_ms: Optional[int] = None) -> None:
        node = self._soup().select_one(selector)
        if node is None or text not in node.get_text():
            raise ScraperTimeoutError("Condition not met before timeout")

    def wait_for_checked(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        node = self._soup().select_one(selector)
        if node is None or not (selector in self.checked or node.has_attr("checked")):
            raise ScraperTimeoutError("Condition not met before timeout")

    # Waits are checked once against the current HTML; handlers run
    # synchronously, so a change that has not happened yet never will.
    def results_state(self, page_info: str, cards: str, no_data: str) -> Tuple[str, int, bool]:
        soup = self._soup()
        node = soup.select_one(page_info)
        text = node.get_text().strip() if node is not None else ""
        return text, len(soup.select(cards)), soup.select_one(no_data) is not None

    def wait_for_results(
        self,
        page_info: str,
        cards: str,
        no_data: str,
        previous: Tuple[str, int, bool],
        timeout_ms: Optional[int] = None,
    ) -> None:
        state = self.results_state(page_info, cards, no_data)
        ready = bool(_PAGE_INFO.search(state[0])) or state[1] > 0 or state[2]
        if not ready or state == tuple(previous):
            raise ScraperTimeoutError("Condition not met before timeout")

    def dropdown_state(self, selectors: Sequence[str]) -> List[Optional[str]]:
        soup = self._soup()
        state: List[Optional[str]] = []
        for selector in selectors:
            node = soup.select_one(selector)
            if node is None:
                state.append(None)
                continue
            options = node.find_all("option")
            selected = next((i for i, o in enumerate(options) if o.has_attr("selected")), 0)
            texts = "|".join(o.get_text().strip() for o in options)
            state.append(f"{selected if options else -1}:{texts}")
        return state

    def wait_for_dropdown_change(
        self,
        selectors: Sequence[str],
        previous: Sequence[Optional[str]],
        timeout_ms: Optional[int] = None,
    ) -> None:
        if self.dropdown_state(selectors) == list(previous):
            raise ScraperTimeoutError("Condition not met before timeout")

    def pause(self, seconds: float) -> None:
        self.pauses.append(seconds)

    # DOM reads
    def content(self) -> str:
        return self.html

    def exists(self, selector: str) -> bool:
        return self.count(selector) > 0

    def count(self, selector: str) -> int:
        return len(self._soup().select(selector))

    def text_of(self, selector: str) -> Optional[str]:
        node = self._soup().select_one(selector)
        return None if node is None else node.get_text().strip()

    # interaction
    def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        node = self._soup().select_one(selector)
        if node is None:
            raise ElementNotFoundError(f"Element not found: {selector}")
        self.actions.append(("click", selector))
        if node.name == "input" and node.get("type") in {"radio", "checkbox"}:
            self.checked.add(selector)
        handler = self.click_handlers.get(selector)
        if handler is not None:
            handler(self)

    def click_by_text(self, selector: str, text: str) -> bool:
        for node in self._soup().select(selector):
            if node.get_text().strip() == text:
                self.actions.append(("click_text", selector, text))
                handler = self.text_click_handlers.get((selector, text))
                if handler is not None:
                    handler(self)
                return True
        return False

    def click_and_wait_for_navigation(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        self.click(selector)
        if self.navigation_timeout:
            raise ScraperTimeoutError(f"No navigation after clicking {selector}")

    def type_text(self, selector: str, text: str, delay_ms: int = 0) -> None:
        self.actions.append(("type", selector, text))

    def fill(self, selector: str, text: str) -> None:
        self.actions.append(("fill", selector, text))

    def select_option(self, selector: str, label: str) -> None:
        self.actions.append(("select", selector, label))
        handler = self.select_handlers.get(selector)
        if handler is not None:
            handler(self)

    def press(self, key: str) -> None:
        self.actions.append(("press", key))

    # cookies and diagnostics
    def get_cookies(self) -> List[Dict[str, Any]]:
        return []

    def take_screenshot(self, path, full_page: bool = True) -> None:  # noqa: ANN001
        self.screenshots.append(str(path))
        return None

    def clicked(self, selector: str) -> bool:
        return ("click", selector) in self.actions


class FakeClient:
    """Stand-in for :class:`PartnerPortalClient` used by orchestrator tests."""

    def __init__(
        self,
        *,
        terms: Optional[List[TermOption]] = None,
        programs: Optional[Dict[str, List[Program]]] = None,
        failing_terms: Tuple[str, ...] = (),
        login_error: bool = False,
    ) -> None:
        self.terms = terms or []
        self.programs = programs or {}
        self.failing_terms = failing_terms
        self.login_error = login_error
        self.initialized = False
        self.logged_in = False
        self.closed = False
        self.searched: List[str] = []

    def initialize(self) -> None:
        self.initialized = True

    def login(self) -> bool:
        if self.login_error:
            raise LoginError("Login failed: Invalid login attempt.")
        self.logged_in = True
        return True

    def list_terms(self) -> List[TermOption]:
        return list(self.terms)

    def setup_program_search(self, term_name: str) -> str:
        self.searched.append(term_name)
        if term_name in self.failing_terms:
            raise ScrapingError(f"Term '{term_name}' not found. Available terms: <none>")
        for option in self.terms:
            if term_name in option.label:
                return option.value
        return term_name

    def get_available_filters(self) -> FilterFields:
        return FilterFields(
            universities=["Istanbul University", "Istanbul University"],
            degrees=["Bachelor"],
            languages=["English"],
        )

    def scrape_programs(self, options=None, on_page=None) -> ScrapeResult:  # noqa: ANN001
        programs = self.programs.get(self.searched[-1], [])
        if on_page is not None:
            on_page(1, 1)
        return ScrapeResult(
            programs=list(programs),
            pagination=PaginationInfo(total_records=len(programs)),
            filters=options,
        )

    def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Callable client factory that hands out pre-built fake clients."""

    def __init__(self, make: Callable[[], FakeClient]) -> None:
        self._make = make
        self.clients: List[FakeClient] = []

    def __call__(self, credentials, config=None) -> FakeClient:  # noqa: ANN001
        client = self._make()
        self.clients.append(client)
        return client

"""Facade combining session, login and search drivers for one scrape run."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .auth import Authenticator
from .errors import InitializationError
from .models import (
    BrowserConfig,
    Credentials,
    FilterFields,
    ProgramSearchOptions,
    ScrapeResult,
    TermOption,
)
from .search import PageCallback, ProgramSearch
from .session import BrowserSession
from .utils import log_line, screenshot_path


class PartnerPortalClient:
    """One browser session, logged in once, driving the program search.

    The orchestrator builds a fresh client per run and calls :meth:`close`
    from a ``finally`` block.
    """

    def __init__(self, credentials: Credentials, config: Optional[BrowserConfig] = None) -> None:
        self.credentials = credentials
        self.session = BrowserSession(config)
        self.auth = Authenticator(self.session, credentials)
        self.search = ProgramSearch(self.session)

    def initialize(self) -> None:
        self.session.initialize()

    def login(self) -> bool:
        if not self.session.is_ready:
            raise InitializationError("Browser not initialized. Call initialize() first.")
        return self.auth.login()

    @property
    def is_logged_in(self) -> bool:
        return self.auth.is_logged_in

    def list_terms(self) -> List[TermOption]:
        self.search.navigate_to_program_search()
        return self.search.list_terms()

    def setup_program_search(self, term_name: str) -> str:
        """Open the wizard and select ``term_name``; return the term value."""

        self.search.navigate_to_program_search()
        return self.search.select_term(term_name)

    def get_available_filters(self) -> FilterFields:
        return self.search.get_filter_fields()

    def scrape_programs(
        self,
        options: Optional[ProgramSearchOptions] = None,
        on_page: Optional[PageCallback] = None,
    ) -> ScrapeResult:
        return self.search.scrape_all_programs(options, on_page)

    def take_screenshot(self, name: str) -> None:
        self.session.take_screenshot(screenshot_path(name))

    def get_cookies(self) -> List[Dict[str, Any]]:
        return self.session.get_cookies()

    def close(self) -> None:
        log_line("[CLIENT] Closing partner portal client")
        self.auth.logout()


__all__ = ["PartnerPortalClient"]

"""Multi-step program search protocol on an authenticated session.

Workflow:

- Open the program search wizard.
- Pick a term radio by label (substring match) and continue.
- Read the five filter dropdowns (university, program, degree, language,
  campus).
- Optionally apply filters and price bounds, then trigger the search.
- Walk the result pages, normalising every card into a ``Program``.

DOM reads go through ``session.content()`` and the pure helpers in
:mod:`catalog.scraper.extraction`; only clicks, typing and waits touch the
live page. Typed :class:`ScraperError` subclasses raised by a step propagate
unchanged; anything else is wrapped with the step that failed.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup

from . import config
from .errors import (
    ElementNotFoundError,
    NavigationError,
    ScraperError,
    ScraperTimeoutError,
    ScrapingError,
)
from .extraction import (
    describe_term_options,
    extract_programs,
    extract_select_options,
    extract_term_options,
    has_no_data,
    match_term,
    parse_html,
    parse_pagination,
)
from .logging_utils import _scraper_event
from .models import (
    FilterFields,
    PaginationInfo,
    Program,
    ProgramSearchOptions,
    ScrapeResult,
    TermOption,
)
from .selectors_program_search import PROGRAM_SEARCH_SELECTORS, ProgramSearchSelectors
from .session import BrowserSession, ResultsState
from .utils import log_line, screenshot_path

PageCallback = Callable[[int, int], None]

STEPPER_WAIT_MS = 15_000
TERM_RADIO_WAIT_MS = 10_000
FILTER_STEP_WAIT_MS = 2_000
# Pages further than this ahead cannot be reached by repeated "next" clicks.
MAX_NEXT_CLICKS = 3


class ProgramSearch:
    """Search wizard driver holding a reference to a ready session."""

    def __init__(
        self,
        session: BrowserSession,
        *,
        search_url: Optional[str] = None,
        selectors: ProgramSearchSelectors = PROGRAM_SEARCH_SELECTORS,
        filters_wait_ms: Optional[int] = None,
        page_info_wait_ms: Optional[int] = None,
    ) -> None:
        self.session = session
        self.search_url = search_url or config.PROGRAM_SEARCH_URL
        self.selectors = selectors
        self.filters_wait_ms = filters_wait_ms or config.FILTERS_WAIT_SECONDS * 1000
        self.page_info_wait_ms = page_info_wait_ms or config.PAGE_INFO_WAIT_SECONDS * 1000

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> BeautifulSoup:
        return parse_html(self.session.content())

    def _settle(self, wait: Callable[[], None], fallback_seconds: float, label: str) -> None:
        """Wait for an observable signal, falling back to a fixed delay."""

        try:
            wait()
        except (ScraperTimeoutError, ElementNotFoundError) as exc:
            log_line(
                f"[SEARCH] {label} not observed ({exc}); falling back to {fallback_seconds}s delay."
            )
            _scraper_event("wait", step="fallback_delay", label=label, seconds=fallback_seconds)
            self.session.pause(fallback_seconds)

    def _results_state(self) -> ResultsState:
        return self.session.results_state(
            self.selectors.page_info, self.selectors.cards, self.selectors.no_data
        )

    def _settle_results(self, before: ResultsState, fallback_seconds: float, label: str) -> None:
        """Wait for the results area to move away from ``before``."""

        self._settle(
            lambda: self.session.wait_for_results(
                self.selectors.page_info,
                self.selectors.cards,
                self.selectors.no_data,
                before,
                timeout_ms=self.page_info_wait_ms,
            ),
            fallback_seconds,
            label,
        )

    def _settle_dropdowns(
        self, watched: Sequence[str], before: Sequence[Optional[str]], timeout_ms: int, label: str
    ) -> None:
        self._settle(
            lambda: self.session.wait_for_dropdown_change(watched, before, timeout_ms=timeout_ms),
            config.FILTER_SETTLE_FALLBACK_SECONDS,
            label,
        )

    def take_screenshot(self, name: str) -> None:
        self.session.take_screenshot(screenshot_path(name))

    # ------------------------------------------------------------------
    # Step 1: wizard
    # ------------------------------------------------------------------

    def navigate_to_program_search(self) -> None:
        log_line("[SEARCH] Navigating to Program Search page...")
        try:
            self.session.navigate_to(self.search_url)
            self.session.wait_for_selector(self.selectors.stepper, timeout_ms=STEPPER_WAIT_MS)
        except Exception as exc:  # noqa: BLE001
            raise NavigationError("Failed to navigate to Program Search", exc) from exc
        log_line("[SEARCH] Program Search page loaded")

    # ------------------------------------------------------------------
    # Step 2: term selection
    # ------------------------------------------------------------------

    def list_terms(self) -> List[TermOption]:
        """Return every term option of the wizard without selecting one."""

        try:
            self.session.wait_for_selector(self.selectors.term_radio, timeout_ms=TERM_RADIO_WAIT_MS)
            options = extract_term_options(self._snapshot(), self.selectors)
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to read term options", exc) from exc
        log_line(f"[SEARCH] Found {len(options)} term options: {describe_term_options(options)}")
        return options

    def select_term(self, term_name: str) -> str:
        """Select the first term whose label contains ``term_name``.

        Returns the radio value, which is the partner portal's term id.
        """

        log_line(f"[SEARCH] Selecting term: {term_name}")
        options = self.list_terms()
        chosen = match_term(options, term_name)
        if chosen is None:
            available = [(option.value, option.label) for option in options]
            _scraper_event("error", phase="select_term", term=term_name, available=available)
            raise ScrapingError(
                f"Term '{term_name}' not found. Available terms: {describe_term_options(options)}"
            )

        radio = (
            f'[id="{chosen.radio_id}"]'
            if chosen.radio_id
            else f'{self.selectors.term_radio}[value="{chosen.value}"]'
        )
        try:
            self.session.click(radio)
            self._settle(
                lambda: self.session.wait_for_checked(radio, timeout_ms=FILTER_STEP_WAIT_MS),
                config.FILTER_SETTLE_FALLBACK_SECONDS,
                "term selection",
            )
            if self.session.exists(self.selectors.continue_button):
                self.session.click(self.selectors.continue_button)
                try:
                    self.session.wait_for_selector(
                        self.selectors.university, timeout_ms=self.filters_wait_ms
                    )
                    log_line("[SEARCH] Filters loaded")
                except ElementNotFoundError:
                    log_line("[SEARCH] Filters not immediately loaded, continuing...")
        except ScraperError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to select term", exc) from exc

        log_line(f"[SEARCH] Selected term id: {chosen.value}")
        return chosen.value

    # ------------------------------------------------------------------
    # Step 3: filter discovery
    # ------------------------------------------------------------------

    def _wait_for_filters(self) -> None:
        try:
            self.session.wait_for_selector(self.selectors.university, timeout_ms=self.filters_wait_ms)
            return
        except ElementNotFoundError as first_error:
            log_line("[SEARCH] University filter not found, probing other filters...")
            for _, selector in self.selectors.dropdowns[1:]:
                try:
                    self.session.wait_for_selector(selector, timeout_ms=FILTER_STEP_WAIT_MS)
                    return
                except ElementNotFoundError:
                    continue
            raise first_error

    def get_filter_fields(self) -> FilterFields:
        log_line("[SEARCH] Extracting filter fields...")
        try:
            self._wait_for_filters()
            soup = self._snapshot()
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to extract filter fields", exc) from exc

        fields = FilterFields()
        for attribute, selector in self.selectors.dropdowns:
            try:
                values = extract_select_options(soup, selector, self.selectors.placeholder_marker)
            except Exception as exc:  # noqa: BLE001
                log_line(f"[SEARCH][WARN] Error extracting options from {selector}: {exc}")
                values = []
            setattr(fields, attribute, values)

        _scraper_event("filters", step="extracted", **fields.counts())
        return fields

    # ------------------------------------------------------------------
    # Step 4: filter application
    # ------------------------------------------------------------------

    def apply_filters(self, options: ProgramSearchOptions) -> None:
        log_line(f"[SEARCH] Applying filters: {options.to_dict()}")
        try:
            self._wait_for_filters()
            for key, value in options.dropdown_values():
                selector = self.selectors.dropdown_for(key)
                # Choosing one dropdown reloads the options of the others.
                dependents = [s for s in self.selectors.dropdown_selectors if s != selector]
                before = self.session.dropdown_state(dependents)
                log_line(f"[SEARCH] Setting {key} to: {value}")
                self.session.select_option(selector, value)
                self._settle_dropdowns(
                    dependents, before, FILTER_STEP_WAIT_MS, f"{key} filter update"
                )
            if options.min_price is not None:
                self.session.fill(self.selectors.min_price, _format_price(options.min_price))
            if options.max_price is not None:
                self.session.fill(self.selectors.max_price, _format_price(options.max_price))
            self.trigger_search()
        except ScraperError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to apply filters", exc) from exc
        log_line("[SEARCH] Filters applied")

    def trigger_search(self) -> None:
        before = self._results_state()
        clicked = False
        if self.session.exists(self.selectors.search_button):
            try:
                log_line("[SEARCH] Clicking search button...")
                self.session.click(self.selectors.search_button)
                clicked = True
            except Exception as exc:  # noqa: BLE001
                log_line(f"[SEARCH][WARN] Search button click failed: {exc}")
        if not clicked:
            log_line("[SEARCH] No search button clicked, submitting with Enter...")
            self.session.press("Enter")

        self._settle_results(before, config.SEARCH_SETTLE_FALLBACK_SECONDS, "search results")

    def reset_filters(self) -> None:
        try:
            if not self.session.exists(self.selectors.reset_button):
                return
            watched = list(self.selectors.dropdown_selectors)
            before = self.session.dropdown_state(watched)
            log_line("[SEARCH] Resetting filters...")
            self.session.click(self.selectors.reset_button)
            self._settle_dropdowns(watched, before, self.filters_wait_ms, "filter reset")
        except ScraperError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to reset filters", exc) from exc

    # ------------------------------------------------------------------
    # Steps 5-6: pagination and extraction
    # ------------------------------------------------------------------

    def get_pagination_info(self) -> PaginationInfo:
        try:
            info = parse_pagination(self._snapshot(), self.selectors)
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to read pagination", exc) from exc
        _scraper_event(
            "pagination",
            current_page=info.current_page,
            total_pages=info.total_pages,
            total_records=info.total_records,
        )
        return info

    def scrape_current_page(self) -> List[Program]:
        try:
            soup = self._snapshot()
            if has_no_data(soup, self.selectors):
                log_line("[SEARCH] No data message displayed; page is empty")
                return []
            selector, programs = extract_programs(soup, self.selectors)
        except Exception as exc:  # noqa: BLE001
            self.take_screenshot("error-scraping")
            raise ScrapingError("Failed to scrape programs", exc) from exc

        if selector is None:
            log_line("[SEARCH][WARN] No program cards found with any selector")
        else:
            log_line(f"[SEARCH] Scraped {len(programs)} programs using {selector!r}")
        return programs

    # ------------------------------------------------------------------
    # Step 7: page navigation
    # ------------------------------------------------------------------

    def _click_next(self) -> bool:
        for selector in self.selectors.next_candidates:
            if self.session.exists(selector):
                self.session.click(selector)
                return True
        return False

    def _wait_for_page(self, page_number: int) -> None:
        try:
            self.session.wait_for_text(
                self.selectors.page_info, f"Page {page_number} of", timeout_ms=self.page_info_wait_ms
            )
        except ScraperTimeoutError:
            log_line("[SEARCH] Page info did not update, continuing anyway...")

    def go_to_page(self, page_number: int) -> None:
        try:
            current = self.get_pagination_info().current_page
            if current == page_number:
                log_line(f"[SEARCH] Already on page {page_number}")
                return
            log_line(f"[SEARCH] Navigating from page {current} to page {page_number}")

            try:
                clicked = self.session.click_by_text(
                    self.selectors.pagination_links, str(page_number)
                ) or self._click_next()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[SEARCH][WARN] Direct pagination click failed: {exc}")
                clicked = False

            if clicked:
                self._wait_for_page(page_number)
                return

            steps = page_number - current
            if 0 < steps <= MAX_NEXT_CLICKS:
                log_line(f"[SEARCH] Using next button navigation ({steps} clicks)")
                for _ in range(steps):
                    before = self._results_state()
                    if not self._click_next():
                        raise NavigationError("Next button not found")
                    self._settle_results(before, config.PAGE_SETTLE_FALLBACK_SECONDS, "next page")
                self._wait_for_page(page_number)
                return

            raise NavigationError("Could not find pagination controls")
        except Exception as exc:  # noqa: BLE001
            log_line(f"[SEARCH][ERROR] Error navigating to page {page_number}: {exc}")
            self.take_screenshot(f"pagination-error-page-{page_number}")
            raise NavigationError(f"Failed to navigate to page {page_number}", exc) from exc

    # ------------------------------------------------------------------
    # Step 8: full extraction
    # ------------------------------------------------------------------

    def scrape_all_programs(
        self,
        options: Optional[ProgramSearchOptions] = None,
        on_page: Optional[PageCallback] = None,
    ) -> ScrapeResult:
        log_line("[SEARCH] Starting to scrape all programs...")
        try:
            if options is not None and not options.is_empty():
                self.apply_filters(options)
            else:
                self.trigger_search()

            pagination = self.get_pagination_info()
            log_line(f"[SEARCH] Total pages to scrape: {pagination.total_pages}")

            programs: List[Program] = []
            for page_number in range(1, pagination.total_pages + 1):
                if page_number > 1:
                    self.go_to_page(page_number)
                log_line(f"[SEARCH] Scraping page {page_number}/{pagination.total_pages}...")
                programs.extend(self.scrape_current_page())
                if on_page is not None:
                    on_page(page_number, pagination.total_pages)
        except ScraperError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ScrapingError("Failed to scrape all programs", exc) from exc

        log_line(f"[SEARCH] Total programs scraped: {len(programs)}")
        return ScrapeResult(programs=programs, pagination=pagination, filters=options)


def _format_price(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


__all__ = ["ProgramSearch", "PageCallback", "MAX_NEXT_CLICKS"]

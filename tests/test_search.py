from __future__ import annotations

from typing import Iterable

import pytest

from catalog.scraper import config
from catalog.scraper.errors import NavigationError, ScraperTimeoutError, ScrapingError
from catalog.scraper.models import ProgramSearchOptions
from catalog.scraper.search import ProgramSearch
from tests.fakes import FakeSession

SEARCH_URL = "https://partner.example.test/Manage/ProgramSearch"

WIZARD_HTML = """
<div id="kt_stepper_example_basic">
  <input type="radio" name="radio_buttons_2" id="term_101" value="101">
  <label for="term_101">Fall 2026-2027 Intake</label>
  <input type="radio" name="radio_buttons_2" id="term_102" value="102">
  <label for="term_102">Spring 2027</label>
  <select id="selectuniversity">
    <option>Please Select</option><option>Istanbul University</option><option>Ankara University</option>
  </select>
  <select id="selectprogram"><option>Please Select</option><option>Medicine</option></select>
  <select id="selectdegree"><option>Please Select</option><option>Bachelor</option><option>Master</option></select>
  <select id="selectlang"><option>Please Select</option><option>English</option></select>
  <select id="selectcampus"><option>Please Select</option></select>
  <input id="minp"><input id="maxp">
  <button id="kt_button_1">Continue</button>
  <button id="kt_button_2">Reset</button>
</div>
"""


def results_html(
    page: int,
    total: int,
    program_ids: Iterable[str],
    *,
    links: bool = True,
    next_link: bool = False,
) -> str:
    cards = "".join(
        f'<div class="col-lg-4"><div class="plan-header"><h3>Program {pid}</h3></div>'
        f'<input type="checkbox" value="{pid}"></div>'
        for pid in program_ids
    )
    numbers = "".join(f'<li><a href="#">{n}</a></li>' for n in range(1, total + 1)) if links else ""
    nxt = '<li class="next"><a href="#">Next</a></li>' if next_link else ""
    return (
        '<div id="kt_stepper_example_basic"><button id="kt_button_1">Search</button>'
        f'<div id="cards-container">{cards}</div>'
        f'<div id="page-info">Page {page} of {total} | Total Records: {total * 2}</div>'
        f'<ul class="pagination">{numbers}{nxt}</ul></div>'
    )


# Results area as rendered before any search: the page-info node is present
# but empty, and the cards container has no cards.
EMPTY_RESULTS_HTML = (
    '<div id="kt_stepper_example_basic"><button id="kt_button_1">Search</button>'
    '<div id="cards-container"></div><div id="page-info"></div></div>'
)


def _raise(exc: Exception):
    def _inner(*_args, **_kwargs):  # noqa: ANN001
        raise exc

    return _inner


def _search(session: FakeSession) -> ProgramSearch:
    return ProgramSearch(session, search_url=SEARCH_URL, filters_wait_ms=100, page_info_wait_ms=100)


def _set_html(html: str):
    def _handler(session: FakeSession) -> None:
        session.html = html

    return _handler


def test_navigate_to_program_search_waits_for_stepper() -> None:
    session = FakeSession()
    session.routes[SEARCH_URL] = WIZARD_HTML

    _search(session).navigate_to_program_search()

    assert ("goto", SEARCH_URL) in session.actions


def test_navigate_to_program_search_failure_is_navigation_error() -> None:
    session = FakeSession()

    with pytest.raises(NavigationError) as excinfo:
        _search(session).navigate_to_program_search()

    assert "Program Search" in str(excinfo.value)
    assert excinfo.value.cause is not None


def test_select_term_by_substring_clicks_radio_and_continues() -> None:
    session = FakeSession(WIZARD_HTML)

    term_id = _search(session).select_term("Fall 2026-2027")

    assert term_id == "101"
    assert session.clicked('[id="term_101"]')
    assert session.clicked("#kt_button_1")
    assert session.pauses == []


def test_select_term_falls_back_to_delay_when_radio_never_checks() -> None:
    session = FakeSession(WIZARD_HTML)
    session.wait_for_checked = _raise(ScraperTimeoutError("Condition not met before timeout"))

    assert _search(session).select_term("Spring") == "102"
    assert session.pauses == [config.FILTER_SETTLE_FALLBACK_SECONDS]


def test_select_unknown_term_lists_available_labels() -> None:
    session = FakeSession(WIZARD_HTML)

    with pytest.raises(ScrapingError) as excinfo:
        _search(session).select_term("Winter 2099")

    message = str(excinfo.value)
    assert "Winter 2099" in message
    assert "Fall 2026-2027 Intake" in message
    assert "Spring 2027" in message
    assert not any(action[0] == "click" for action in session.actions)


def test_get_filter_fields_reads_each_dropdown() -> None:
    session = FakeSession(WIZARD_HTML)

    fields = _search(session).get_filter_fields()

    assert fields.universities == ["Istanbul University", "Ankara University"]
    assert fields.programs == ["Medicine"]
    assert fields.degrees == ["Bachelor", "Master"]
    assert fields.languages == ["English"]
    assert fields.campuses == []


def test_get_filter_fields_without_any_dropdown_fails() -> None:
    session = FakeSession("<div id='kt_stepper_example_basic'></div>")

    with pytest.raises(ScrapingError):
        _search(session).get_filter_fields()


def test_apply_filters_sets_dropdowns_prices_and_searches() -> None:
    session = FakeSession(WIZARD_HTML)
    # Choosing a university reloads the program dropdown; choosing a degree
    # changes nothing else on the page.
    session.select_handlers["#selectuniversity"] = _set_html(
        WIZARD_HTML.replace("<option>Medicine</option>", "<option>Medicine</option><option>Law</option>")
    )
    session.click_handlers["#kt_button_1"] = _set_html(results_html(1, 1, ["P-1"]))
    options = ProgramSearchOptions(
        university="Istanbul University", degree="Bachelor", min_price=1000, max_price=15000.5
    )

    _search(session).apply_filters(options)

    assert ("select", "#selectuniversity", "Istanbul University") in session.actions
    assert ("select", "#selectdegree", "Bachelor") in session.actions
    assert ("fill", "#minp", "1000") in session.actions
    assert ("fill", "#maxp", "15000.5") in session.actions
    assert session.clicked("#kt_button_1")
    assert session.pauses == [config.FILTER_SETTLE_FALLBACK_SECONDS]


def test_trigger_search_without_button_presses_enter_and_falls_back_to_delay() -> None:
    session = FakeSession("<div id='kt_stepper_example_basic'></div>")

    _search(session).trigger_search()

    assert ("press", "Enter") in session.actions
    assert session.pauses == [config.SEARCH_SETTLE_FALLBACK_SECONDS]


def test_scrape_all_programs_walks_every_page() -> None:
    session = FakeSession(EMPTY_RESULTS_HTML)
    session.click_handlers["#kt_button_1"] = _set_html(results_html(1, 3, ["P-1", "P-2"]))
    session.text_click_handlers[(".pagination li a", "2")] = _set_html(
        results_html(2, 3, ["P-3", "P-4"])
    )
    session.text_click_handlers[(".pagination li a", "3")] = _set_html(results_html(3, 3, ["P-5"]))
    pages: list[tuple[int, int]] = []

    result = _search(session).scrape_all_programs(on_page=lambda cur, total: pages.append((cur, total)))

    assert [p.program_id for p in result.programs] == ["P-1", "P-2", "P-3", "P-4", "P-5"]
    assert pages == [(1, 3), (2, 3), (3, 3)]
    assert result.pagination.total_pages == 3
    assert result.pagination.total_records == 6
    assert result.filters is None
    assert session.pauses == []


def test_scrape_all_programs_with_empty_result_page() -> None:
    session = FakeSession(EMPTY_RESULTS_HTML)
    session.click_handlers["#kt_button_1"] = _set_html(
        '<div id="kt_stepper_example_basic"><button id="kt_button_1">Search</button>'
        '<div class="no-data-message">No programs found</div></div>'
    )

    result = _search(session).scrape_all_programs()

    assert result.programs == []
    assert result.pagination.total_pages == 1
    assert session.pauses == []


def test_search_does_not_accept_empty_page_info_placeholder_as_results() -> None:
    session = FakeSession(EMPTY_RESULTS_HTML)

    result = _search(session).scrape_all_programs()

    assert session.clicked("#kt_button_1")
    assert session.pauses == [config.SEARCH_SETTLE_FALLBACK_SECONDS]
    assert result.programs == []


def test_repeated_search_with_unchanged_results_falls_back_to_delay() -> None:
    session = FakeSession(results_html(1, 1, ["P-1"]))

    _search(session).trigger_search()

    assert session.pauses == [config.SEARCH_SETTLE_FALLBACK_SECONDS]


def test_go_to_page_uses_next_link_when_number_missing() -> None:
    session = FakeSession(results_html(1, 2, ["P-1"], links=False, next_link=True))
    session.click_handlers[".pagination .next a"] = _set_html(
        results_html(2, 2, ["P-2"], links=False, next_link=True)
    )

    _search(session).go_to_page(2)

    assert session.clicked(".pagination .next a")
    assert "Page 2 of 2" in session.html


def test_go_to_page_falls_back_to_next_clicks_when_direct_click_errors() -> None:
    session = FakeSession(results_html(1, 2, ["P-1"], next_link=True))
    session.click_by_text = _raise(RuntimeError("element detached"))
    session.click_handlers[".pagination .next a"] = _set_html(
        results_html(2, 2, ["P-2"], next_link=True)
    )

    _search(session).go_to_page(2)

    assert session.clicked(".pagination .next a")
    assert "Page 2 of 2" in session.html
    assert session.pauses == []


def test_go_to_page_waits_for_exact_page_number() -> None:
    session = FakeSession(results_html(12, 20, ["P-12"]))
    session.text_click_handlers[(".pagination li a", "1")] = _set_html(results_html(1, 20, ["P-1"]))
    needles: list[str] = []
    wait_for_text = session.wait_for_text

    def _recording_wait(selector: str, text: str, timeout_ms=None) -> None:  # noqa: ANN001
        needles.append(text)
        wait_for_text(selector, text, timeout_ms)

    session.wait_for_text = _recording_wait

    _search(session).go_to_page(1)

    # "Page 12 of 20" contains "Page 1"; the wait must look for "Page 1 of".
    assert needles == ["Page 1 of"]
    assert ("click_text", ".pagination li a", "1") in session.actions


def test_go_to_page_is_noop_on_current_page() -> None:
    session = FakeSession(results_html(2, 3, ["P-3"]))

    _search(session).go_to_page(2)

    assert session.actions == []


def test_go_to_page_without_controls_raises_and_screenshots() -> None:
    session = FakeSession(results_html(1, 5, ["P-1"], links=False))

    with pytest.raises(NavigationError) as excinfo:
        _search(session).go_to_page(5)

    assert "page 5" in str(excinfo.value)
    assert len(session.screenshots) == 1
    assert "pagination-error-page-5" in session.screenshots[0]


def test_scrape_current_page_wraps_errors_with_screenshot() -> None:
    session = FakeSession(results_html(1, 1, ["P-1"]))
    session.content = _raise(RuntimeError("page crashed"))

    with pytest.raises(ScrapingError) as excinfo:
        _search(session).scrape_current_page()

    assert "page crashed" in str(excinfo.value)
    assert len(session.screenshots) == 1


def test_reset_filters_clicks_reset_button() -> None:
    session = FakeSession(WIZARD_HTML)

    _search(session).reset_filters()

    assert session.clicked("#kt_button_2")
    assert session.pauses == [config.FILTER_SETTLE_FALLBACK_SECONDS]


def test_reset_filters_waits_for_dropdowns_to_clear() -> None:
    filtered = WIZARD_HTML.replace(
        "<option>Bachelor</option>", "<option selected>Bachelor</option>"
    )
    session = FakeSession(filtered)
    session.click_handlers["#kt_button_2"] = _set_html(WIZARD_HTML)

    _search(session).reset_filters()

    assert session.pauses == []

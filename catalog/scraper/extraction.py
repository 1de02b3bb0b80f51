"""HTML extraction strategies for the program search wizard.

Everything here is a pure function over a parsed page snapshot so the
strategies can be exercised against fixed markup fixtures without a browser.
The driver in :mod:`catalog.scraper.search` takes a snapshot with
``session.content()`` and hands it to these helpers.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import PaginationInfo, Program, TermOption
from .selectors_program_search import (
    CARD_SELECTORS,
    FACT_MARKERS,
    PROGRAM_SEARCH_SELECTORS,
    QUOTA_FULL_MARKER,
    CardSelectors,
    ProgramSearchSelectors,
)
from .utils import collapse_whitespace, parse_numeric

_PAGE_PATTERN = re.compile(r"Page\s+(\d+)\s+of\s+(\d+)", re.IGNORECASE)
_RECORDS_PATTERN = re.compile(r"Total\s+Records:\s*(\d+)", re.IGNORECASE)
_CURRENCY_PATTERN = re.compile(r"\b[A-Z]{3}\b")
_CAMPUS_PREFIX = re.compile(r"^\s*Campus\s*:?\s*", re.IGNORECASE)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html5lib")


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return collapse_whitespace(node.get_text(" "))


def first_text(card: Tag, candidates: Iterable[str]) -> str:
    """Return the text of the first candidate selector with non-empty text."""

    for selector in candidates:
        value = _text(card.select_one(selector))
        if value:
            return value
    return ""


def first_attr(card: Tag, candidates: Iterable[str], attr: str) -> str:
    for selector in candidates:
        node = card.select_one(selector)
        if node is None:
            continue
        value = (node.get(attr) or "").strip()
        if value:
            return value
    return ""


# ---------------------------------------------------------------------------
# Term selection
# ---------------------------------------------------------------------------


def extract_term_options(
    soup: BeautifulSoup, selectors: ProgramSearchSelectors = PROGRAM_SEARCH_SELECTORS
) -> List[TermOption]:
    """Return the wizard's term radios with the text of their labels."""

    options: List[TermOption] = []
    for radio in soup.select(selectors.term_radio):
        radio_id = (radio.get("id") or "").strip()
        label_text = ""
        if radio_id:
            label = soup.find("label", attrs={"for": radio_id})
            label_text = _text(label)
        if not label_text:
            parent_label = radio.find_parent("label")
            label_text = _text(parent_label)
        options.append(
            TermOption(
                value=(radio.get("value") or "").strip(),
                label=label_text,
                radio_id=radio_id,
            )
        )
    return options


def match_term(options: Sequence[TermOption], name: str) -> Optional[TermOption]:
    """Return the first option whose label contains ``name``."""

    needle = (name or "").strip()
    if not needle:
        return None
    for option in options:
        if needle in option.label:
            return option
    return None


def describe_term_options(options: Sequence[TermOption]) -> str:
    return ", ".join(option.label for option in options) or "<none>"


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def extract_select_options(
    soup: BeautifulSoup, selector: str, placeholder: str = PROGRAM_SEARCH_SELECTORS.placeholder_marker
) -> List[str]:
    """Return option labels of a ``<select>``, skipping the placeholder."""

    labels: List[str] = []
    for option in soup.select(f"{selector} option"):
        text = _text(option)
        if not text or placeholder.lower() in text.lower():
            continue
        labels.append(text)
    return labels


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def parse_page_info_text(text: str) -> Tuple[Optional[Tuple[int, int]], Optional[int]]:
    """Parse ``Page X of Y`` and ``Total Records: N`` out of ``text``."""

    page_match = _PAGE_PATTERN.search(text or "")
    records_match = _RECORDS_PATTERN.search(text or "")
    pages = (int(page_match.group(1)), int(page_match.group(2))) if page_match else None
    records = int(records_match.group(1)) if records_match else None
    return pages, records


def parse_pagination(
    soup: BeautifulSoup, selectors: ProgramSearchSelectors = PROGRAM_SEARCH_SELECTORS
) -> PaginationInfo:
    """Read pagination from the page-info node, or fall back to the card count."""

    node = soup.select_one(selectors.page_info)
    if node is None:
        _, cards = find_cards(soup, selectors.card_candidates)
        return PaginationInfo(
            current_page=1,
            total_pages=1,
            total_records=len(cards),
            records_per_page=len(cards),
        )

    pages, records = parse_page_info_text(_text(node))
    current, total = pages if pages else (1, 1)
    return PaginationInfo(
        current_page=current,
        total_pages=max(1, total),
        total_records=records or 0,
    )


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def has_no_data(
    soup: BeautifulSoup, selectors: ProgramSearchSelectors = PROGRAM_SEARCH_SELECTORS
) -> bool:
    return soup.select_one(selectors.no_data) is not None


def find_cards(soup: BeautifulSoup, candidates: Sequence[str]) -> Tuple[Optional[str], List[Tag]]:
    """Return ``(selector, cards)`` for the first candidate with any match."""

    for selector in candidates:
        cards = soup.select(selector)
        if cards:
            return selector, cards
    return None, []


def classify_list_items(texts: Iterable[str]) -> Dict[str, str]:
    """Map each list-item text to the first fact marker it contains."""

    facts: Dict[str, str] = {}
    for text in texts:
        for fact, markers in FACT_MARKERS:
            if any(marker in text for marker in markers):
                facts.setdefault(fact, text)
                break
    return facts


def parse_card(card: Tag, selectors: CardSelectors = CARD_SELECTORS) -> Program:
    """Normalise one result card into a :class:`Program`."""

    item_texts = [_text(li) for li in card.select(selectors.list_items)]
    facts = classify_list_items(item_texts)

    discounted_text = facts.get("discounted", "")
    currency_match = _CURRENCY_PATTERN.search(discounted_text) or _CURRENCY_PATTERN.search(
        facts.get("tuition", "")
    )
    campus = _CAMPUS_PREFIX.sub("", facts.get("campus", ""))

    checkbox = card.select_one(selectors.checkbox)

    def data_attr(name: str) -> str:
        if checkbox is None:
            return ""
        return (checkbox.get(f"data-{name}") or "").strip()

    return Program(
        program_id=((checkbox.get("value") if checkbox is not None else "") or "").strip(),
        program_name=first_text(card, selectors.program_name),
        alternative_program_name=first_text(card, selectors.alternative_program_name),
        university_name=first_text(card, selectors.university_name),
        university_id=data_attr("university"),
        university_logo=first_attr(card, selectors.university_logo, "src"),
        program_degree=data_attr("degreec"),
        language=data_attr("lang"),
        campus=campus,
        tuition_fee=parse_numeric(facts.get("tuition")),
        discounted_tuition_fee=parse_numeric(discounted_text),
        currency=currency_match.group(0) if currency_match else "",
        deposit_price=parse_numeric(facts.get("deposit")),
        prep_school_fee=parse_numeric(facts.get("prep_school")),
        cash_payment_fee=facts.get("cash_payment", ""),
        quota_full=QUOTA_FULL_MARKER.lower() in facts.get("quota", "").lower(),
        semester=data_attr("semester"),
        term_settings=data_attr("term"),
        academic_year=data_attr("academic"),
    )


def extract_programs(
    soup: BeautifulSoup, selectors: ProgramSearchSelectors = PROGRAM_SEARCH_SELECTORS
) -> Tuple[Optional[str], List[Program]]:
    """Return ``(matched card selector, programs)`` for the current page."""

    if has_no_data(soup, selectors):
        return None, []
    selector, cards = find_cards(soup, selectors.card_candidates)
    return selector, [parse_card(card) for card in cards]


__all__ = [
    "parse_html",
    "first_text",
    "first_attr",
    "extract_term_options",
    "match_term",
    "describe_term_options",
    "extract_select_options",
    "parse_page_info_text",
    "parse_pagination",
    "has_no_data",
    "find_cards",
    "classify_list_items",
    "parse_card",
    "extract_programs",
]

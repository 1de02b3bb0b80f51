from __future__ import annotations

"""Selectors and text markers for the partner portal's program search.

The partner markup is not versioned, so most lookups carry an ordered tuple
of candidates; callers use the first candidate that matches.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class LoginSelectors:
    form: str = "#kt_sign_in_form"
    email: str = "#Email"
    password: str = "#Password"
    submit: str = "#kt_sign_in_submit"
    error: str = ".text-danger"


@dataclass(frozen=True)
class ProgramSearchSelectors:
    """Selector hints for the multi-step program search wizard."""

    stepper: str = "#kt_stepper_example_basic"
    term_radio: str = 'input[name="radio_buttons_2"]'
    continue_button: str = "#kt_button_1"
    search_button: str = "#kt_button_1"
    reset_button: str = "#kt_button_2"

    university: str = "#selectuniversity"
    program: str = "#selectprogram"
    degree: str = "#selectdegree"
    language: str = "#selectlang"
    campus: str = "#selectcampus"
    min_price: str = "#minp"
    max_price: str = "#maxp"

    placeholder_marker: str = "Please Select"

    card_candidates: Tuple[str, ...] = (
        "#cards-container .col-lg-4",
        "#cards-container .col-xl-3",
        "#cards-container .col-md-4",
        "#cards-container .card",
        ".program-card",
    )
    no_data: str = ".no-data-message"
    page_info: str = "#page-info"
    pagination_links: str = ".pagination li a"
    next_candidates: Tuple[str, ...] = (
        ".pagination .next a",
        ".pagination li.next a",
        'a[aria-label="Next"]',
        ".pagination a[rel='next']",
    )

    def dropdown_for(self, key: str) -> str:
        """Return the dropdown selector for a filter key (``university`` ...)."""

        return getattr(self, key)

    @property
    def dropdowns(self) -> Tuple[Tuple[str, str], ...]:
        """``(filter_fields attribute, selector)`` for the five dropdowns."""

        return (
            ("universities", self.university),
            ("programs", self.program),
            ("degrees", self.degree),
            ("languages", self.language),
            ("campuses", self.campus),
        )

    @property
    def cards(self) -> str:
        """Every card candidate as one selector list, for counting cards."""

        return ", ".join(self.card_candidates)

    @property
    def dropdown_selectors(self) -> Tuple[str, ...]:
        return tuple(selector for _, selector in self.dropdowns)


@dataclass(frozen=True)
class CardSelectors:
    """Per-card selector candidates, tried in order."""

    university_logo: Tuple[str, ...] = (
        ".plan-header img",
        ".plan-header .plan-price img",
        ".card-header img",
        ".university-logo img",
    )
    university_name: Tuple[str, ...] = (
        ".plan-header h4:nth-of-type(2)",
        ".plan-header h4:not(:first-of-type)",
        ".plan-header h4",
        ".card-header h4",
        ".university-name",
    )
    program_name: Tuple[str, ...] = (
        ".plan-header h3",
        ".card-title h3",
        ".program-name",
    )
    alternative_program_name: Tuple[str, ...] = (".plan-header p",)
    list_items: str = "ul li"
    checkbox: str = 'input[type="checkbox"]'


# Keyword markers for list-item facts. Order matters: the first matching
# marker group claims the item, so "Discounted Tuition Fee" is a discount.
FACT_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("discounted", ("Discounted", "Discount")),
    ("tuition", ("Tuition Fee", "Tuition")),
    ("deposit", ("Deposit", "Advance")),
    ("prep_school", ("Prep School", "Foundation")),
    ("campus", ("Campus",)),
    ("quota", ("Quota",)),
    ("cash_payment", ("Cash", "Payment")),
)

QUOTA_FULL_MARKER = "Quota Full"

LOGIN_SELECTORS = LoginSelectors()
PROGRAM_SEARCH_SELECTORS = ProgramSearchSelectors()
CARD_SELECTORS = CardSelectors()

__all__ = [
    "LoginSelectors",
    "ProgramSearchSelectors",
    "CardSelectors",
    "FACT_MARKERS",
    "QUOTA_FULL_MARKER",
    "LOGIN_SELECTORS",
    "PROGRAM_SEARCH_SELECTORS",
    "CARD_SELECTORS",
]

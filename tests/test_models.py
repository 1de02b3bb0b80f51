from catalog.scraper.models import (
    FilterFields,
    JobStatus,
    ProgramSearchOptions,
    academic_year_from_name,
    progress_percentage,
)
import pytest


def test_search_options_from_mapping_ignores_blank_values():
    options = ProgramSearchOptions.from_mapping(
        {"university": "Istanbul University", "degree": "", "min_price": "1500", "user_id": "x"}
    )

    assert options is not None
    assert options.dropdown_values() == [("university", "Istanbul University")]
    assert options.min_price == 1500.0
    assert options.to_dict() == {"university": "Istanbul University", "min_price": 1500.0}


def test_search_options_from_mapping_empty_is_none():
    assert ProgramSearchOptions.from_mapping(None) is None
    assert ProgramSearchOptions.from_mapping({"degree": ""}) is None
    with pytest.raises(ValueError):
        ProgramSearchOptions.from_mapping({"max_price": "lots"})


def test_filter_fields_deduplicated_keeps_order():
    fields = FilterFields(universities=["B", "A", "B", ""], languages=["English"])

    cleaned = fields.deduplicated()

    assert cleaned.universities == ["B", "A"]
    assert cleaned.counts()["universities"] == 2
    assert cleaned.counts()["languages"] == 1


def test_progress_percentage_and_academic_year():
    assert progress_percentage(1, 3) == 33
    assert progress_percentage(3, 3) == 100
    assert progress_percentage(2, 0) == 0
    assert academic_year_from_name("Fall 2026-2027 Intake") == "2026-2027"
    assert academic_year_from_name("Summer school") == ""


def test_job_status_terminal_flags():
    assert JobStatus.COMPLETED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert not JobStatus.RUNNING.is_terminal

from __future__ import annotations

from pathlib import Path

import pytest

from catalog.scraper import db
from catalog.scraper.errors import InvalidJobTransition
from catalog.scraper.gateway import SqliteGateway
from catalog.scraper.models import FilterFields, JobStatus, Program


@pytest.fixture
def gateway(tmp_path: Path) -> SqliteGateway:
    conn = db.connect(tmp_path / "gateway.db")
    db.initialize_schema(conn)
    yield SqliteGateway(conn)
    conn.close()


def _program(program_id: str, fee: float = 1000.0) -> Program:
    return Program(
        program_id=program_id,
        program_name=f"Program {program_id}",
        university_name="Istanbul University",
        discounted_tuition_fee=fee,
        quota_full=program_id.endswith("Q"),
    )


def test_initialize_schema_is_idempotent(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "twice.db")
    db.initialize_schema(conn)
    db.initialize_schema(conn)

    tables = {
        row["name"]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    }
    assert {"terms", "filter_fields", "programs", "jobs", "job_logs"} <= tables


def test_upsert_term_inserts_then_refreshes_without_regressing_scrape_state(
    gateway: SqliteGateway,
) -> None:
    term = gateway.upsert_term("101", "Fall 2026-2027 Intake")
    assert term.academic_year == "2026-2027"
    assert term.is_scraped is False

    gateway.mark_term_scraped("101", 42)
    refreshed = gateway.upsert_term("101", "Fall 2026-2027 Intake (updated)")

    assert refreshed.name == "Fall 2026-2027 Intake (updated)"
    assert refreshed.is_scraped is True
    assert refreshed.program_count == 42
    assert refreshed.last_scraped_at is not None
    assert len(gateway.list_terms()) == 1


def test_upsert_term_raises_lookup_error_when_row_cannot_be_read_back(
    gateway: SqliteGateway, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(gateway, "get_term", lambda term_id: None)

    with pytest.raises(LookupError, match="101"):
        gateway.upsert_term("101", "Fall 2026-2027 Intake")


def test_list_unscraped_terms_newest_first(gateway: SqliteGateway) -> None:
    for term_id in ("A", "B", "C"):
        gateway.upsert_term(term_id, f"Term {term_id}")
    gateway.mark_term_scraped("B", 3)

    assert [term.term_id for term in gateway.list_unscraped_terms()] == ["C", "A"]


def test_bulk_upsert_programs_is_idempotent(gateway: SqliteGateway) -> None:
    programs = [_program("P-1"), _program("P-2Q")]

    first = gateway.bulk_upsert_programs("101", programs)
    second = gateway.bulk_upsert_programs("101", [_program("P-1", 900.0), _program("P-2Q")])

    assert (first.upserted_count, first.modified_count) == (2, 0)
    assert (second.upserted_count, second.modified_count) == (0, 2)
    assert gateway.count_programs("101") == 2
    row = gateway.conn.execute(
        "SELECT discounted_tuition_fee, quota_full FROM programs WHERE program_id = 'P-1'"
    ).fetchone()
    assert row["discounted_tuition_fee"] == 900.0
    assert row["quota_full"] == 0


def test_bulk_upsert_programs_keys_on_term_and_program(gateway: SqliteGateway) -> None:
    gateway.bulk_upsert_programs("101", [_program("P-1")])
    summary = gateway.bulk_upsert_programs("102", [_program("P-1"), _program("")])

    assert summary.upserted_count == 1
    assert gateway.count_programs("101") == 1
    assert gateway.count_programs("102") == 1


def test_replace_filter_fields_deduplicates_and_replaces(gateway: SqliteGateway) -> None:
    gateway.replace_filter_fields(
        "101", FilterFields(universities=["Istanbul University", "Istanbul University", ""])
    )
    gateway.replace_filter_fields("101", FilterFields(degrees=["Bachelor"]))

    fields = gateway.get_filter_fields("101")
    assert fields is not None
    assert fields.universities == []
    assert fields.degrees == ["Bachelor"]
    assert fields.last_updated is not None
    assert gateway.get_filter_fields("999") is None


def test_job_status_progression_sets_timestamps(gateway: SqliteGateway) -> None:
    job_id = gateway.create_job("101", "Fall 2026-2027", "tester")

    job = gateway.get_job(job_id)
    assert job.status is JobStatus.PENDING
    assert job.started_at is None and job.completed_at is None

    gateway.set_job_status(job_id, JobStatus.RUNNING)
    job = gateway.get_job(job_id)
    assert job.started_at is not None
    assert job.completed_at is None

    gateway.set_job_status(job_id, JobStatus.COMPLETED)
    job = gateway.get_job(job_id)
    assert job.status is JobStatus.COMPLETED
    assert job.completed_at is not None


@pytest.mark.parametrize(
    "path, rejected",
    [
        ([JobStatus.RUNNING, JobStatus.COMPLETED], JobStatus.RUNNING),
        ([JobStatus.RUNNING, JobStatus.FAILED], JobStatus.COMPLETED),
        ([], JobStatus.COMPLETED),
        ([JobStatus.RUNNING], JobStatus.PENDING),
    ],
)
def test_job_status_cannot_move_backwards(gateway: SqliteGateway, path, rejected) -> None:  # noqa: ANN001
    job_id = gateway.create_job("101", "Fall", "tester")
    for status in path:
        gateway.set_job_status(job_id, status)

    with pytest.raises(InvalidJobTransition):
        gateway.set_job_status(job_id, rejected)


def test_failed_job_records_error(gateway: SqliteGateway) -> None:
    job_id = gateway.create_job("101", "Fall", "tester")
    gateway.set_job_status(job_id, JobStatus.FAILED, error="Login failed")

    job = gateway.get_job(job_id)
    assert job.error == "Login failed"
    assert job.completed_at is not None
    assert job.started_at is None


def test_job_logs_progress_and_listing(gateway: SqliteGateway) -> None:
    first = gateway.create_job("101", "Fall", "tester")
    second = gateway.create_job("102", "Spring", "tester")
    gateway.append_job_log(first, "info", "one")
    gateway.append_job_log(first, "warn", "two")
    gateway.update_job_progress(first, 1, 4)
    gateway.set_job_programs_scraped(first, 12)

    job = gateway.get_job(first)
    assert [(log.level, log.message) for log in job.logs] == [("info", "one"), ("warn", "two")]
    assert (job.progress.current_page, job.progress.total_pages, job.progress.percentage) == (1, 4, 25)
    assert job.programs_scraped == 12
    assert [j.id for j in gateway.list_jobs(limit=10)] == [second, first]
    assert [j.id for j in gateway.list_jobs(limit=1)] == [second]

    with pytest.raises(ValueError):
        gateway.append_job_log(first, "debug", "nope")


def test_find_active_job_ignores_terminal_jobs(gateway: SqliteGateway) -> None:
    done = gateway.create_job("101", "Fall", "tester")
    gateway.set_job_status(done, JobStatus.FAILED, error="boom")
    assert gateway.find_active_job("101") is None

    active = gateway.create_job("101", "Fall", "tester")
    assert gateway.find_active_job("101").id == active
    assert gateway.get_job(9999) is None

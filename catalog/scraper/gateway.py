"""Persistence gateway used by the scrape orchestrator.

:class:`PersistenceGateway` is the contract the orchestrator depends on;
:class:`SqliteGateway` implements it on the explicit process-wide SQLite
connection opened by :func:`catalog.scraper.db.connect`.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from typing import Iterable, List, Optional, Protocol

from .errors import InvalidJobTransition
from .models import (
    ACTIVE_JOB_STATUSES,
    JOB_TRANSITIONS,
    FilterFields,
    Job,
    JobLog,
    JobProgress,
    JobStatus,
    Program,
    Term,
    UpsertSummary,
    academic_year_from_name,
    progress_percentage,
)
from .utils import log_line, utc_now

JOB_LOG_LEVELS = ("info", "warn", "error")

_PROGRAM_COLUMNS = (
    "program_id",
    "program_name",
    "alternative_program_name",
    "university_name",
    "university_id",
    "university_logo",
    "program_degree",
    "language",
    "campus",
    "tuition_fee",
    "discounted_tuition_fee",
    "currency",
    "deposit_price",
    "prep_school_fee",
    "cash_payment_fee",
    "quota_full",
    "semester",
    "term_settings",
    "academic_year",
    "is_active",
)


class PersistenceGateway(Protocol):
    def upsert_term(self, term_id: str, name: str, academic_year: Optional[str] = None) -> Term: ...

    def get_term(self, term_id: str) -> Optional[Term]: ...

    def list_terms(self) -> List[Term]: ...

    def list_unscraped_terms(self) -> List[Term]: ...

    def mark_term_scraped(self, term_id: str, program_count: int) -> None: ...

    def replace_filter_fields(self, term_id: str, fields: FilterFields) -> None: ...

    def get_filter_fields(self, term_id: str) -> Optional[FilterFields]: ...

    def bulk_upsert_programs(self, term_id: str, programs: Iterable[Program]) -> UpsertSummary: ...

    def create_job(self, term_id: str, term_name: str, initiated_by: str) -> int: ...

    def append_job_log(self, job_id: int, level: str, message: str) -> None: ...

    def set_job_status(
        self, job_id: int, status: JobStatus, error: Optional[str] = None
    ) -> None: ...

    def update_job_progress(self, job_id: int, current_page: int, total_pages: int) -> None: ...

    def set_job_programs_scraped(self, job_id: int, count: int) -> None: ...

    def get_job(self, job_id: int) -> Optional[Job]: ...

    def find_active_job(self, term_id: str) -> Optional[Job]: ...

    def list_jobs(self, limit: int = 50) -> List[Job]: ...


def _row_to_term(row: sqlite3.Row) -> Term:
    return Term(
        term_id=row["term_id"],
        name=row["name"],
        academic_year=row["academic_year"] or "",
        is_active=bool(row["is_active"]),
        is_scraped=bool(row["is_scraped"]),
        program_count=int(row["program_count"] or 0),
        last_scraped_at=row["last_scraped_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_job(row: sqlite3.Row, logs: List[JobLog]) -> Job:
    return Job(
        id=int(row["id"]),
        term_id=row["term_id"],
        term_name=row["term_name"],
        status=JobStatus(row["status"]),
        initiated_by=row["initiated_by"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        programs_scraped=int(row["programs_scraped"] or 0),
        error=row["error"],
        logs=logs,
        progress=JobProgress(
            current_page=int(row["current_page"] or 0),
            total_pages=int(row["total_pages"] or 0),
            percentage=int(row["percentage"] or 0),
        ),
    )


class SqliteGateway:
    """SQLite-backed :class:`PersistenceGateway`.

    One instance wraps one connection. A re-entrant lock serialises access
    because the web process shares the handle with background scrape threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._lock = threading.RLock()

    @property
    def lock(self):
        """The lock guarding :attr:`conn`; hold it for queries made outside the gateway."""

        return self._lock

    # ------------------------------------------------------------------
    # Terms
    # ------------------------------------------------------------------

    def upsert_term(self, term_id: str, name: str, academic_year: Optional[str] = None) -> Term:
        """Insert a new term or refresh its name; scrape state is never reset."""

        now = utc_now()
        year = academic_year if academic_year is not None else academic_year_from_name(name)
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO terms (term_id, name, academic_year, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(term_id) DO UPDATE SET
                        name = excluded.name,
                        academic_year = excluded.academic_year,
                        updated_at = excluded.updated_at
                    """,
                    (term_id, name, year, now, now),
                )
            term = self.get_term(term_id)
        if term is None:
            raise LookupError(f"Term {term_id} vanished after upsert")
        return term

    def get_term(self, term_id: str) -> Optional[Term]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM terms WHERE term_id = ?", (term_id,)
            ).fetchone()
        return _row_to_term(row) if row else None

    def list_terms(self) -> List[Term]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM terms ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [_row_to_term(row) for row in rows]

    def list_unscraped_terms(self) -> List[Term]:
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT * FROM terms
                WHERE is_scraped = 0 AND is_active = 1
                ORDER BY created_at DESC, rowid DESC
                """
            ).fetchall()
        return [_row_to_term(row) for row in rows]

    def mark_term_scraped(self, term_id: str, program_count: int) -> None:
        now = utc_now()
        with self._lock, self.conn:
            self.conn.execute(
                """
                UPDATE terms
                SET is_scraped = 1, program_count = ?, last_scraped_at = ?, updated_at = ?
                WHERE term_id = ?
                """,
                (int(program_count), now, now, term_id),
            )

    # ------------------------------------------------------------------
    # Filter fields
    # ------------------------------------------------------------------

    def replace_filter_fields(self, term_id: str, fields: FilterFields) -> None:
        cleaned = fields.deduplicated()
        payload = [json.dumps(getattr(cleaned, name)) for name in FilterFields.FIELD_NAMES]
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO filter_fields (
                    term_id, universities, programs, degrees, languages, campuses, last_updated
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(term_id) DO UPDATE SET
                    universities = excluded.universities,
                    programs = excluded.programs,
                    degrees = excluded.degrees,
                    languages = excluded.languages,
                    campuses = excluded.campuses,
                    last_updated = excluded.last_updated
                """,
                (term_id, *payload, utc_now()),
            )

    def get_filter_fields(self, term_id: str) -> Optional[FilterFields]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM filter_fields WHERE term_id = ?", (term_id,)
            ).fetchone()
        if row is None:
            return None
        lists = {name: json.loads(row[name] or "[]") for name in FilterFields.FIELD_NAMES}
        return FilterFields(term_id=row["term_id"], last_updated=row["last_updated"], **lists)

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------

    def bulk_upsert_programs(self, term_id: str, programs: Iterable[Program]) -> UpsertSummary:
        """Upsert programs keyed by ``(term_id, program_id)``.

        ``upserted_count`` counts new rows and ``modified_count`` counts rows
        that already existed, so repeating a scrape grows only the latter.
        """

        summary = UpsertSummary()
        now = utc_now()
        columns = ", ".join(("term_id",) + _PROGRAM_COLUMNS + ("last_scraped",))
        placeholders = ", ".join("?" for _ in range(len(_PROGRAM_COLUMNS) + 2))
        updates = ", ".join(
            f"{name} = excluded.{name}"
            for name in _PROGRAM_COLUMNS[1:] + ("last_scraped",)
        )
        sql = (
            f"INSERT INTO programs ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(term_id, program_id) DO UPDATE SET {updates}"
        )

        with self._lock, self.conn:
            for program in programs:
                if not program.program_id:
                    continue
                exists = self.conn.execute(
                    "SELECT 1 FROM programs WHERE term_id = ? AND program_id = ?",
                    (term_id, program.program_id),
                ).fetchone()
                values = []
                for name in _PROGRAM_COLUMNS:
                    value = getattr(program, name)
                    values.append(int(value) if isinstance(value, bool) else value)
                self.conn.execute(sql, (term_id, *values, now))
                if exists:
                    summary.modified_count += 1
                else:
                    summary.upserted_count += 1
        return summary

    def count_programs(self, term_id: str) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM programs WHERE term_id = ?", (term_id,)
            ).fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, term_id: str, term_name: str, initiated_by: str) -> int:
        """Insert a ``pending`` job and return its id."""

        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO jobs (term_id, term_name, status, initiated_by, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (term_id, term_name, JobStatus.PENDING.value, initiated_by, utc_now()),
            )
        return int(cursor.lastrowid)

    def append_job_log(self, job_id: int, level: str, message: str) -> None:
        if level not in JOB_LOG_LEVELS:
            raise ValueError(f"Unknown job log level: {level}")
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO job_logs (job_id, timestamp, level, message) VALUES (?, ?, ?, ?)",
                (job_id, utc_now(), level, message),
            )

    def set_job_status(self, job_id: int, status: JobStatus, error: Optional[str] = None) -> None:
        """Move a job forward; backward or post-terminal moves raise.

        ``started_at`` is stamped on ``running`` and ``completed_at`` on every
        terminal status.
        """

        status = JobStatus(status)
        now = utc_now()
        with self._lock, self.conn:
            row = self.conn.execute("SELECT status FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise LookupError(f"Job {job_id} does not exist")
            current = JobStatus(row["status"])
            if status not in JOB_TRANSITIONS[current]:
                raise InvalidJobTransition(
                    f"Job {job_id} cannot move from {current.value} to {status.value}"
                )

            assignments = ["status = ?"]
            params: list = [status.value]
            if status is JobStatus.RUNNING:
                assignments.append("started_at = ?")
                params.append(now)
            if status.is_terminal:
                assignments.append("completed_at = ?")
                params.append(now)
            if error is not None:
                assignments.append("error = ?")
                params.append(error)
            params.append(job_id)
            self.conn.execute(
                f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?", tuple(params)
            )
        log_line(f"[DB] Job {job_id}: {current.value} -> {status.value}")

    def update_job_progress(self, job_id: int, current_page: int, total_pages: int) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                UPDATE jobs SET current_page = ?, total_pages = ?, percentage = ?
                WHERE id = ?
                """,
                (
                    current_page,
                    total_pages,
                    progress_percentage(current_page, total_pages),
                    job_id,
                ),
            )

    def set_job_programs_scraped(self, job_id: int, count: int) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE jobs SET programs_scraped = ? WHERE id = ?", (int(count), job_id)
            )

    def _job_logs(self, job_id: int) -> List[JobLog]:
        rows = self.conn.execute(
            "SELECT timestamp, level, message FROM job_logs WHERE job_id = ? ORDER BY id",
            (job_id,),
        ).fetchall()
        return [JobLog(row["timestamp"], row["level"], row["message"]) for row in rows]

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                return None
            return _row_to_job(row, self._job_logs(job_id))

    def find_active_job(self, term_id: str) -> Optional[Job]:
        statuses = sorted(status.value for status in ACTIVE_JOB_STATUSES)
        with self._lock:
            row = self.conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE term_id = ? AND status IN ({", ".join("?" for _ in statuses)})
                ORDER BY id DESC LIMIT 1
                """,
                (term_id, *statuses),
            ).fetchone()
            if row is None:
                return None
            return _row_to_job(row, self._job_logs(int(row["id"])))

    def list_jobs(self, limit: int = 50) -> List[Job]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC, id DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
            return [_row_to_job(row, self._job_logs(int(row["id"]))) for row in rows]


__all__ = ["JOB_LOG_LEVELS", "PersistenceGateway", "SqliteGateway"]

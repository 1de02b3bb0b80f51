"""SQLite helpers for the program-catalog scraper.

This module owns the database path, the connection helper and schema
initialisation. Row-level reads and writes live in
:mod:`catalog.scraper.gateway` and :mod:`catalog.scraper.db_reporting`.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable, Optional

from . import config

DB_PATH: Path = config.DB_PATH


def connect(path: Optional[Path | str] = None) -> sqlite3.Connection:
    """Return a SQLite connection to the project database.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so the web process can share one handle with its background
    scrape threads. :class:`~catalog.scraper.gateway.SqliteGateway` serialises
    access with a lock.
    """

    target = Path(path) if path is not None else DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create the tables if they do not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS terms (
            term_id          TEXT PRIMARY KEY,
            name             TEXT NOT NULL,
            academic_year    TEXT NOT NULL DEFAULT '',
            is_active        INTEGER NOT NULL DEFAULT 1,
            is_scraped       INTEGER NOT NULL DEFAULT 0,
            program_count    INTEGER NOT NULL DEFAULT 0,
            last_scraped_at  TEXT,
            created_at       TEXT NOT NULL,
            updated_at       TEXT NOT NULL
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_terms_scraped
            ON terms(is_scraped, created_at DESC);
        """,
        """
        CREATE TABLE IF NOT EXISTS filter_fields (
            term_id       TEXT PRIMARY KEY,
            universities  TEXT NOT NULL DEFAULT '[]',
            programs      TEXT NOT NULL DEFAULT '[]',
            degrees       TEXT NOT NULL DEFAULT '[]',
            languages     TEXT NOT NULL DEFAULT '[]',
            campuses      TEXT NOT NULL DEFAULT '[]',
            last_updated  TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS programs (
            id                        INTEGER PRIMARY KEY AUTOINCREMENT,
            term_id                   TEXT NOT NULL,
            program_id                TEXT NOT NULL,
            program_name              TEXT NOT NULL DEFAULT '',
            alternative_program_name  TEXT NOT NULL DEFAULT '',
            university_name           TEXT NOT NULL DEFAULT '',
            university_id             TEXT NOT NULL DEFAULT '',
            university_logo           TEXT NOT NULL DEFAULT '',
            program_degree            TEXT NOT NULL DEFAULT '',
            language                  TEXT NOT NULL DEFAULT '',
            campus                    TEXT NOT NULL DEFAULT '',
            tuition_fee               REAL NOT NULL DEFAULT 0,
            discounted_tuition_fee    REAL NOT NULL DEFAULT 0,
            currency                  TEXT NOT NULL DEFAULT '',
            deposit_price             REAL NOT NULL DEFAULT 0,
            prep_school_fee           REAL NOT NULL DEFAULT 0,
            cash_payment_fee          TEXT NOT NULL DEFAULT '',
            quota_full                INTEGER NOT NULL DEFAULT 0,
            semester                  TEXT NOT NULL DEFAULT '',
            term_settings             TEXT NOT NULL DEFAULT '',
            academic_year             TEXT NOT NULL DEFAULT '',
            is_active                 INTEGER NOT NULL DEFAULT 1,
            last_scraped              TEXT,
            UNIQUE(term_id, program_id)
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_programs_term_university
            ON programs(term_id, university_name);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_programs_term_degree
            ON programs(term_id, program_degree);
        """,
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            term_id           TEXT NOT NULL,
            term_name         TEXT NOT NULL,
            status            TEXT NOT NULL,
            initiated_by      TEXT NOT NULL,
            created_at        TEXT NOT NULL,
            started_at        TEXT,
            completed_at      TEXT,
            programs_scraped  INTEGER NOT NULL DEFAULT 0,
            error             TEXT,
            current_page      INTEGER NOT NULL DEFAULT 0,
            total_pages       INTEGER NOT NULL DEFAULT 0,
            percentage        INTEGER NOT NULL DEFAULT 0
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_jobs_created_at
            ON jobs(created_at DESC);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_jobs_term_status
            ON jobs(term_id, status);
        """,
        """
        CREATE TABLE IF NOT EXISTS job_logs (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id     INTEGER NOT NULL,
            timestamp  TEXT NOT NULL,
            level      TEXT NOT NULL,
            message    TEXT NOT NULL,
            FOREIGN KEY(job_id) REFERENCES jobs(id)
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_job_logs_job
            ON job_logs(job_id, id);
        """,
    )

    with conn:
        for statement in statements:
            conn.execute(statement)


__all__ = ["DB_PATH", "connect", "initialize_schema"]

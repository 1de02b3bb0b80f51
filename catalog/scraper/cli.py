from __future__ import annotations

"""Command line entry point for term discovery, scraping and reporting."""

import argparse
import json
import sqlite3
import sys
from typing import Optional, Sequence

from . import config, db
from .config_validation import validate_runtime_config
from .errors import ScraperError
from .export_excel import export_term_programs
from .gateway import SqliteGateway
from .healthcheck import run_health_checks
from .models import Job, JobStatus, ProgramSearchOptions
from .orchestrator import ScrapeOrchestrator
from .utils import ensure_dirs, log_line, setup_run_logger

SCRAPE_COMMANDS = {"discover-terms", "scrape-term", "scrape-all"}


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the catalog CLI."""

    parser = argparse.ArgumentParser(
        prog="catalog",
        description="Scrape the partner portal's program catalog.",
    )
    parser.add_argument("--db", help="SQLite database path (defaults to DATA_DIR/catalog.db).")
    parser.add_argument(
        "--user-id",
        default="cli",
        help="Operator id recorded on jobs started from the CLI.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("discover-terms", help="Read all term options into the term store.")

    scrape_term = sub.add_parser("scrape-term", help="Scrape one stored term.")
    scrape_term.add_argument("--term-id", required=True)
    _add_filter_arguments(scrape_term)

    scrape_all = sub.add_parser("scrape-all", help="Scrape every unscraped term.")
    _add_filter_arguments(scrape_all)

    jobs = sub.add_parser("jobs", help="List recent jobs.")
    jobs.add_argument("--limit", type=int, default=config.DEFAULT_JOB_LIMIT)

    job = sub.add_parser("job", help="Show one job with its logs.")
    job.add_argument("--job-id", type=int, required=True)

    sub.add_parser("terms", help="List stored terms.")

    export = sub.add_parser("export", help="Export a term's programs to Excel.")
    export.add_argument("--term-id", required=True)
    export.add_argument("--output", help="Destination .xlsx path.")

    sub.add_parser("health", help="Run configuration, filesystem and database checks.")
    return parser


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    for key in ProgramSearchOptions.DROPDOWN_KEYS:
        parser.add_argument(f"--{key}", help=f"Restrict the search to this {key}.")
    parser.add_argument("--min-price", type=float)
    parser.add_argument("--max-price", type=float)


def _search_options(args: argparse.Namespace) -> Optional[ProgramSearchOptions]:
    values = {key: getattr(args, key, None) for key in ProgramSearchOptions.DROPDOWN_KEYS}
    values["min_price"] = getattr(args, "min_price", None)
    values["max_price"] = getattr(args, "max_price", None)
    return ProgramSearchOptions.from_mapping(values)


def _build_orchestrator(gateway: SqliteGateway) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(gateway, config.browser_config())


def _print_job(job: Job, *, with_logs: bool = False) -> None:
    print(
        f"Job {job.id} [{job.status.value}] term={job.term_id} ({job.term_name}) "
        f"programs={job.programs_scraped} created={job.created_at}"
    )
    if job.error:
        print(f"  error: {job.error}")
    if with_logs:
        for entry in job.logs:
            print(f"  {entry.timestamp} {entry.level.upper():5} {entry.message}")


def _run_scrape(args: argparse.Namespace, gateway: SqliteGateway) -> int:
    validate_runtime_config("cli", require_credentials=True)
    setup_run_logger()
    orchestrator = _build_orchestrator(gateway)
    try:
        orchestrator.initialize(config.credentials_from_env())
        if args.command == "scrape-all":
            job_ids = orchestrator.scrape_all_unscraped_terms(args.user_id, _search_options(args))
        elif args.command == "discover-terms":
            job_ids = [orchestrator.scrape_and_save_terms(args.user_id)]
        else:
            job_ids = [
                orchestrator.start_scraping_for_term(
                    args.term_id, args.user_id, _search_options(args)
                )
            ]
    finally:
        orchestrator.close()

    failed = 0
    for job_id in job_ids:
        job = gateway.get_job(job_id)
        if job is not None:
            _print_job(job)
            failed += job.status is JobStatus.FAILED
    return 1 if failed else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the catalog CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    ensure_dirs()
    conn: sqlite3.Connection = db.connect(args.db)
    try:
        db.initialize_schema(conn)
        gateway = SqliteGateway(conn)

        if args.command in SCRAPE_COMMANDS:
            return _run_scrape(args, gateway)

        if args.command == "jobs":
            for job in gateway.list_jobs(args.limit):
                _print_job(job)
            return 0

        if args.command == "job":
            job = gateway.get_job(args.job_id)
            if job is None:
                print(f"Job {args.job_id} not found", file=sys.stderr)
                return 1
            _print_job(job, with_logs=True)
            return 0

        if args.command == "terms":
            for term in gateway.list_terms():
                state = "scraped" if term.is_scraped else "pending"
                print(f"{term.term_id}\t{term.name}\t{state}\tprograms={term.program_count}")
            return 0

        if args.command == "export":
            path = export_term_programs(conn, args.term_id, args.output)
            print(path)
            return 0

        if args.command == "health":
            result = run_health_checks("cli", conn)
            print(json.dumps({"ok": result.ok, "checks": result.checks}, indent=2))
            return 0 if result.ok else 1
    except (ScraperError, LookupError, ValueError) as exc:
        log_line(f"[CLI][ERROR] {args.command} failed: {exc}")
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        conn.close()

    parser.error(f"Unknown command {args.command}")
    return 2


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())

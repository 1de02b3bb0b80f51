"""Compose login and program search into persisted, auditable scrape jobs."""
from __future__ import annotations

import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from . import config
from .client import PartnerPortalClient
from .errors import InitializationError, JobConflictError, ScraperError
from .gateway import PersistenceGateway
from .logging_utils import _scraper_event, job_context
from .models import (
    DISCOVERY_TERM_ID,
    BrowserConfig,
    Credentials,
    Job,
    JobStatus,
    Program,
    ProgramSearchOptions,
    Term,
)
from .utils import log_line, short_error_message

ClientFactory = Callable[[Credentials, Optional[BrowserConfig]], PartnerPortalClient]

DISCOVERY_JOB_NAME = "Term discovery"
JOB_ERROR_MAX_LENGTH = 500


def normalize_programs(term_id: str, programs: Iterable[Program]) -> List[Program]:
    """Stamp ``term_id`` on each program, dropping blank and repeated ids.

    The first card seen for a ``program_id`` wins.
    """

    seen = set()
    normalized: List[Program] = []
    for program in programs:
        program_id = (program.program_id or "").strip()
        if not program_id or program_id in seen:
            continue
        seen.add(program_id)
        normalized.append(replace(program, program_id=program_id, term_id=term_id, is_active=True))
    return normalized


class ScrapeOrchestrator:
    """Runs term discovery and per-term scrapes as jobs.

    A fresh :class:`PartnerPortalClient` (one browser session) is used per
    run and released when the run ends, whatever the outcome. Terms in a batch
    are scraped strictly one after another.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        browser_config: Optional[BrowserConfig] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        between_terms_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.browser_config = browser_config
        self._client_factory = client_factory or PartnerPortalClient
        self.between_terms_delay = (
            config.BETWEEN_TERMS_DELAY_SECONDS if between_terms_delay is None else between_terms_delay
        )
        self._sleep = sleep
        self.credentials: Optional[Credentials] = None
        self.client: Optional[PartnerPortalClient] = None

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    def initialize(self, credentials: Credentials) -> None:
        """Open a session and log in. Login failures raise immediately."""

        self.credentials = credentials
        self._open_client()

    def _open_client(self) -> PartnerPortalClient:
        if self.credentials is None:
            raise InitializationError("Scraper not initialized. Call initialize() first.")
        self._release_client()
        client = self._client_factory(self.credentials, self.browser_config)
        try:
            client.initialize()
            client.login()
        except Exception:
            client.close()
            raise
        self.client = client
        return client

    def _require_client(self) -> PartnerPortalClient:
        if self.client is None:
            raise InitializationError("Scraper not initialized. Call initialize() first.")
        return self.client

    def _release_client(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            client.close()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[ORCH][WARN] Error releasing browser session: {exc}")

    def close(self) -> None:
        self._release_client()

    # ------------------------------------------------------------------
    # Job bookkeeping
    # ------------------------------------------------------------------

    def _job_log(self, job_id: int, message: str, level: str = "info") -> None:
        log_line(f"[JOB {job_id}] {message}")
        self.gateway.append_job_log(job_id, level, message)

    def _set_status(self, job_id: int, status: JobStatus, message: Optional[str] = None) -> None:
        self.gateway.set_job_status(job_id, status)
        _scraper_event("job", job_id=job_id, status=status.value)
        if message:
            self._job_log(job_id, message)

    def _fail_job(self, job_id: int, exc: BaseException) -> None:
        """Record ``exc`` on the job; bookkeeping errors are logged, not raised."""

        message = short_error_message(exc, JOB_ERROR_MAX_LENGTH)
        error_type = getattr(exc, "error_type", type(exc).__name__)
        try:
            self.gateway.set_job_status(job_id, JobStatus.FAILED, error=message)
            self.gateway.append_job_log(job_id, "error", f"Error [{error_type}]: {message}")
        except Exception as db_exc:  # noqa: BLE001
            log_line(f"[ORCH][ERROR] Could not mark job {job_id} failed: {db_exc}")
        _scraper_event(
            "error", phase="job", job_id=job_id, error_type=error_type, error=message
        )

    def _record_progress(self, job_id: int, current_page: int, total_pages: int) -> None:
        try:
            self.gateway.update_job_progress(job_id, current_page, total_pages)
        except Exception as exc:  # noqa: BLE001
            log_line(f"[ORCH][WARN] Could not record progress for job {job_id}: {exc}")

    # ------------------------------------------------------------------
    # Term discovery
    # ------------------------------------------------------------------

    def scrape_and_save_terms(self, user_id: str) -> int:
        """Read every term option of the wizard into the term store."""

        try:
            client = self._require_client()
            job_id = self.gateway.create_job(DISCOVERY_TERM_ID, DISCOVERY_JOB_NAME, user_id)
            with job_context(job_id, DISCOVERY_TERM_ID):
                try:
                    self._set_status(job_id, JobStatus.RUNNING, "Discovering terms...")
                    options = client.list_terms()
                    created = 0
                    for option in options:
                        if not option.value:
                            self._job_log(
                                job_id, f"Skipping term without id: {option.label!r}", "warn"
                            )
                            continue
                        if self.gateway.get_term(option.value) is None:
                            created += 1
                        self.gateway.upsert_term(option.value, option.label)
                    self._set_status(
                        job_id,
                        JobStatus.COMPLETED,
                        f"Discovered {len(options)} terms ({created} new)",
                    )
                except Exception as exc:
                    self._fail_job(job_id, exc)
                    raise
            return job_id
        finally:
            self._release_client()

    # ------------------------------------------------------------------
    # Per-term scraping
    # ------------------------------------------------------------------

    def _lookup_term(self, term_id: str) -> Term:
        term = self.gateway.get_term(term_id)
        if term is None:
            raise LookupError(f"Term {term_id} not found")
        return term

    def _create_term_job(self, term: Term, user_id: str) -> int:
        active = self.gateway.find_active_job(term.term_id)
        if active is not None:
            raise JobConflictError(term.term_id, active.id)
        job_id = self.gateway.create_job(term.term_id, term.name, user_id)
        self._job_log(job_id, f"Scraping queued for term: {term.name}")
        return job_id

    def start_scraping_for_term(
        self,
        term_id: str,
        user_id: str,
        options: Optional[ProgramSearchOptions] = None,
    ) -> int:
        """Scrape one term on the session opened by :meth:`initialize`.

        Failures mark the job ``failed`` and propagate to the caller.
        """

        try:
            term = self._lookup_term(term_id)
            self._require_client()
            job_id = self._create_term_job(term, user_id)
        except Exception:
            self._release_client()
            raise
        return self._run_term_job(job_id, term, options)

    def _run_term_job(
        self,
        job_id: int,
        term: Term,
        options: Optional[ProgramSearchOptions],
        *,
        connect: bool = False,
    ) -> int:
        with job_context(job_id, term.term_id):
            try:
                client = self._open_client() if connect else self._require_client()
                self._set_status(
                    job_id, JobStatus.RUNNING, f"Scraping started for term: {term.name}"
                )

                selected = client.setup_program_search(term.name)
                if selected != term.term_id:
                    self._job_log(
                        job_id,
                        f"Selected term id {selected!r} differs from stored id {term.term_id!r}",
                        "warn",
                    )

                self._job_log(job_id, "Fetching filter fields...")
                fields = client.get_available_filters()
                self.gateway.replace_filter_fields(
                    term.term_id, replace(fields, term_id=term.term_id)
                )
                self._job_log(job_id, "Filter fields saved successfully")

                self._job_log(job_id, "Starting program scraping...")
                result = client.scrape_programs(
                    options,
                    on_page=lambda current, total: self._record_progress(job_id, current, total),
                )
                programs = normalize_programs(term.term_id, result.programs)
                dropped = len(result.programs) - len(programs)
                if dropped:
                    self._job_log(
                        job_id, f"Dropped {dropped} cards without a unique program id", "warn"
                    )

                summary = self.gateway.bulk_upsert_programs(term.term_id, programs)
                self.gateway.set_job_programs_scraped(job_id, len(programs))
                self.gateway.mark_term_scraped(term.term_id, len(programs))
                self._set_status(
                    job_id,
                    JobStatus.COMPLETED,
                    f"Successfully scraped {len(programs)} programs "
                    f"({summary.upserted_count} new, {summary.modified_count} updated)",
                )
                return job_id
            except Exception as exc:
                self._fail_job(job_id, exc)
                raise
            finally:
                self._release_client()

    def scrape_all_unscraped_terms(
        self,
        user_id: str,
        options: Optional[ProgramSearchOptions] = None,
    ) -> List[int]:
        """Scrape every unscraped term with a fresh session each.

        A failing term is logged and skipped. Returns one job id per
        attempted term.
        """

        if self.credentials is None:
            raise InitializationError("Scraper not initialized. Call initialize() first.")
        self._release_client()

        terms = self.gateway.list_unscraped_terms()
        log_line(f"[ORCH] Found {len(terms)} unscraped terms")
        job_ids: List[int] = []
        for index, term in enumerate(terms):
            if index and self.between_terms_delay > 0:
                log_line(f"[ORCH] Waiting {self.between_terms_delay}s before next term")
                self._sleep(self.between_terms_delay)

            try:
                job_id = self._create_term_job(term, user_id)
            except JobConflictError as exc:
                log_line(f"[ORCH][WARN] Skipping {term.name}: {exc}")
                continue
            job_ids.append(job_id)

            try:
                self._run_term_job(job_id, term, options, connect=True)
            except ScraperError as exc:
                log_line(f"[ORCH][ERROR] Failed to scrape term {term.name} [{exc.error_type}]: {exc}")
            except Exception as exc:  # noqa: BLE001
                log_line(f"[ORCH][ERROR] Failed to scrape term {term.name}: {exc}")

        _scraper_event("batch", step="done", terms=len(terms), jobs=len(job_ids))
        return job_ids

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: int) -> Optional[Job]:
        return self.gateway.get_job(job_id)

    def get_all_jobs(self, limit: int = 50) -> List[Job]:
        return self.gateway.list_jobs(limit)

    def get_all_terms(self) -> List[Term]:
        return self.gateway.list_terms()


__all__ = ["ClientFactory", "ScrapeOrchestrator", "normalize_programs"]

"""Exception hierarchy raised by the scraping engine."""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorType


class ScraperError(Exception):
    """Base class for scraper failures.

    ``cause`` keeps the low-level exception (usually a Playwright error) for
    diagnostics; it is also chained as ``__cause__`` when raised with
    ``raise ... from``.
    """

    error_type: str = ErrorType.INTERNAL

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class InitializationError(ScraperError):
    error_type = ErrorType.INITIALIZATION


class LoginError(ScraperError):
    error_type = ErrorType.LOGIN


class NavigationError(ScraperError):
    error_type = ErrorType.NAVIGATION


class ScrapingError(ScraperError):
    error_type = ErrorType.SCRAPING


class ElementNotFoundError(ScraperError):
    error_type = ErrorType.ELEMENT_NOT_FOUND


class ScraperTimeoutError(ScraperError):
    error_type = ErrorType.TIMEOUT


class JobConflictError(ScraperError):
    """A pending or running job already exists for the requested term."""

    error_type = ErrorType.JOB_CONFLICT

    def __init__(self, term_id: str, job_id: int) -> None:
        super().__init__(f"Term {term_id} already has an active job (job_id={job_id})")
        self.term_id = term_id
        self.job_id = job_id


class InvalidJobTransition(ValueError):
    """Raised when a job status change would break the job lifecycle."""


__all__ = [
    "ScraperError",
    "InitializationError",
    "LoginError",
    "NavigationError",
    "ScrapingError",
    "ElementNotFoundError",
    "ScraperTimeoutError",
    "JobConflictError",
    "InvalidJobTransition",
]

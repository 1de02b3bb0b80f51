from __future__ import annotations

"""Error type taxonomy for scraper failures.

These values are written into job log lines and structured events so that
operators can tell which step of a run failed. Treat them as stable
identifiers for reporting.
"""


class ErrorType:
    INITIALIZATION = "INITIALIZATION_ERROR"
    LOGIN = "LOGIN_ERROR"
    NAVIGATION = "NAVIGATION_ERROR"
    SCRAPING = "SCRAPING_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
    JOB_CONFLICT = "JOB_CONFLICT"
    INTERNAL = "INTERNAL_ERROR"


__all__ = ["ErrorType"]

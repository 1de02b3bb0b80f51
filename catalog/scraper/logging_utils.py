from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from .utils import log_line

_job_fields = threading.local()


@contextmanager
def job_context(job_id: int, term_id: Optional[str] = None) -> Iterator[None]:
    """Tag every scraper event emitted on this thread with the running job.

    Scrapes run one job per background thread, so events raised deep in the
    search driver (settle fallbacks, pagination) still name their job and term.
    """

    previous = getattr(_job_fields, "fields", {})
    current = dict(previous, job_id=job_id)
    if term_id:
        current["term_id"] = term_id
    _job_fields.fields = current
    try:
        yield
    finally:
        _job_fields.fields = previous


def current_job_fields() -> dict[str, Any]:
    return dict(getattr(_job_fields, "fields", {}))


def _scraper_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured scraper log line.

    ``phase`` may be used as a keyword alias for the label. When both
    ``label`` and ``phase`` are provided, ``phase`` is emitted as part of the
    payload so the caller still captures the event stage. Fields from an
    enclosing :func:`job_context` are added unless the caller passes them.
    """

    try:
        phase_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        for key, value in current_job_fields().items():
            fields.setdefault(key, value)
        payload = ", ".join(f"{k}={repr(v)}" for k, v in sorted(fields.items()))
        log_line(f"[SCRAPER][{phase_label.upper()}] {payload}")
    except Exception:
        # Never let logging break the scraper.
        return


__all__ = ["_scraper_event", "job_context", "current_job_fields", "log_line"]

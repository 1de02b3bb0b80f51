"""Value types shared by the drivers, the orchestrator and the gateway."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Term id used by the term-discovery job, which is not tied to one term.
DISCOVERY_TERM_ID = "N/A"

_ACADEMIC_YEAR = re.compile(r"\d{4}-\d{4}")


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})

# Allowed forward moves; terminal states have no outgoing edges.
JOB_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class BrowserConfig:
    """Launch options for one headless browser session."""

    headless: bool = True
    timeout_ms: int = 30_000
    viewport: Tuple[int, int] = (1366, 768)
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    slow_mo_ms: int = 0


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class TermOption:
    """One radio option of the wizard's term-selection step."""

    value: str
    label: str
    radio_id: str = ""


@dataclass
class ProgramSearchOptions:
    university: Optional[str] = None
    program: Optional[str] = None
    degree: Optional[str] = None
    language: Optional[str] = None
    campus: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    DROPDOWN_KEYS = ("university", "program", "degree", "language", "campus")

    def dropdown_values(self) -> List[Tuple[str, str]]:
        """Return ``(key, value)`` pairs for the dropdown filters that are set."""

        pairs = []
        for key in self.DROPDOWN_KEYS:
            value = getattr(self, key)
            if value:
                pairs.append((key, value))
        return pairs

    def is_empty(self) -> bool:
        return not self.dropdown_values() and self.min_price is None and self.max_price is None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> Optional["ProgramSearchOptions"]:
        if not data:
            return None
        kwargs: Dict[str, Any] = {}
        for key in cls.DROPDOWN_KEYS:
            value = data.get(key)
            if value not in (None, ""):
                kwargs[key] = str(value)
        for key in ("min_price", "max_price"):
            value = data.get(key)
            if value not in (None, ""):
                kwargs[key] = float(value)
        return cls(**kwargs) if kwargs else None


@dataclass
class FilterFields:
    universities: List[str] = field(default_factory=list)
    programs: List[str] = field(default_factory=list)
    degrees: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    campuses: List[str] = field(default_factory=list)
    term_id: str = ""
    last_updated: Optional[str] = None

    FIELD_NAMES = ("universities", "programs", "degrees", "languages", "campuses")

    def deduplicated(self) -> "FilterFields":
        """Return a copy with duplicates collapsed, keeping first-seen order."""

        cleaned = {
            name: list(dict.fromkeys(v for v in getattr(self, name) if v))
            for name in self.FIELD_NAMES
        }
        return FilterFields(term_id=self.term_id, last_updated=self.last_updated, **cleaned)

    def counts(self) -> Dict[str, int]:
        return {name: len(getattr(self, name)) for name in self.FIELD_NAMES}


@dataclass
class PaginationInfo:
    current_page: int = 1
    total_pages: int = 1
    total_records: int = 0
    records_per_page: int = 12


@dataclass
class Program:
    program_id: str
    program_name: str = ""
    alternative_program_name: str = ""
    university_name: str = ""
    university_id: str = ""
    university_logo: str = ""
    program_degree: str = ""
    language: str = ""
    campus: str = ""
    tuition_fee: float = 0.0
    discounted_tuition_fee: float = 0.0
    currency: str = ""
    deposit_price: float = 0.0
    prep_school_fee: float = 0.0
    cash_payment_fee: str = ""
    quota_full: bool = False
    semester: str = ""
    term_settings: str = ""
    academic_year: str = ""
    term_id: str = ""
    last_scraped: Optional[str] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeResult:
    programs: List[Program]
    pagination: PaginationInfo
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    filters: Optional[ProgramSearchOptions] = None


@dataclass
class Term:
    term_id: str
    name: str
    academic_year: str = ""
    is_active: bool = True
    is_scraped: bool = False
    program_count: int = 0
    last_scraped_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JobLog:
    timestamp: str
    level: str
    message: str


@dataclass
class JobProgress:
    current_page: int = 0
    total_pages: int = 0
    percentage: int = 0


@dataclass
class Job:
    id: int
    term_id: str
    term_name: str
    status: JobStatus
    initiated_by: str
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    programs_scraped: int = 0
    error: Optional[str] = None
    logs: List[JobLog] = field(default_factory=list)
    progress: JobProgress = field(default_factory=JobProgress)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass
class UpsertSummary:
    upserted_count: int = 0
    modified_count: int = 0


def academic_year_from_name(name: str) -> str:
    """Return the ``YYYY-YYYY`` fragment of a term name, or ``""``."""

    match = _ACADEMIC_YEAR.search(name or "")
    return match.group(0) if match else ""


def progress_percentage(current_page: int, total_pages: int) -> int:
    if total_pages <= 0:
        return 0
    return int(round(current_page / total_pages * 100))


__all__ = [
    "DEFAULT_USER_AGENT",
    "DISCOVERY_TERM_ID",
    "SessionState",
    "JobStatus",
    "TERMINAL_JOB_STATUSES",
    "ACTIVE_JOB_STATUSES",
    "JOB_TRANSITIONS",
    "BrowserConfig",
    "Credentials",
    "TermOption",
    "ProgramSearchOptions",
    "FilterFields",
    "PaginationInfo",
    "Program",
    "ScrapeResult",
    "Term",
    "JobLog",
    "JobProgress",
    "Job",
    "UpsertSummary",
    "academic_year_from_name",
    "progress_percentage",
]

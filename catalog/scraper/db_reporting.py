from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .gateway import PersistenceGateway
from .models import FilterFields

SORTABLE_COLUMNS = {
    "discounted_tuition_fee",
    "tuition_fee",
    "program_name",
    "university_name",
    "program_degree",
    "language",
    "campus",
    "last_scraped",
}
DEFAULT_SORT = "discounted_tuition_fee"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass
class ProgramFilters:
    """Filters for the program listing. ``None`` means "not filtered"."""

    term_id: Optional[str] = None
    university: Optional[str] = None
    degree: Optional[str] = None
    language: Optional[str] = None
    campus: Optional[str] = None
    quota_full: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    search: Optional[str] = None

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ProgramFilters":
        """Build filters from query-string style arguments.

        Raises ``ValueError`` for malformed numbers.
        """

        def text(name: str) -> Optional[str]:
            value = (args.get(name) or "").strip()
            return value or None

        def number(name: str) -> Optional[float]:
            raw = text(name)
            return float(raw) if raw is not None else None

        quota_raw = text("quota_full")
        quota = None if quota_raw is None else quota_raw.lower() in {"1", "true", "yes"}
        return cls(
            term_id=text("term_id"),
            university=text("university"),
            degree=text("degree"),
            language=text("language"),
            campus=text("campus"),
            quota_full=quota,
            min_price=number("min_price"),
            max_price=number("max_price"),
            search=text("search"),
        )


def _where_clause(filters: ProgramFilters) -> tuple[str, List[Any]]:
    clauses = ["is_active = 1"]
    params: List[Any] = []
    for column, value in (
        ("term_id", filters.term_id),
        ("university_name", filters.university),
        ("program_degree", filters.degree),
        ("language", filters.language),
        ("campus", filters.campus),
    ):
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)
    if filters.quota_full is not None:
        clauses.append("quota_full = ?")
        params.append(1 if filters.quota_full else 0)
    if filters.min_price is not None:
        clauses.append("discounted_tuition_fee >= ?")
        params.append(filters.min_price)
    if filters.max_price is not None:
        clauses.append("discounted_tuition_fee <= ?")
        params.append(filters.max_price)
    if filters.search:
        like = f"%{filters.search}%"
        clauses.append(
            "(program_name LIKE ? OR alternative_program_name LIKE ? OR university_name LIKE ?)"
        )
        params.extend([like, like, like])
    return " AND ".join(clauses), params


def _program_row(row: sqlite3.Row) -> Dict[str, Any]:
    payload = dict(row)
    payload["quota_full"] = bool(payload.get("quota_full"))
    payload["is_active"] = bool(payload.get("is_active"))
    return payload


def list_programs(
    conn: sqlite3.Connection,
    filters: Optional[ProgramFilters] = None,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = DEFAULT_SORT,
    sort_order: str = "asc",
) -> Dict[str, Any]:
    """Return one page of active programs plus pagination metadata.

    Unknown sort columns fall back to the discounted fee; page and limit are
    clamped to sane bounds.
    """

    filters = filters or ProgramFilters()
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    column = sort_by if sort_by in SORTABLE_COLUMNS else DEFAULT_SORT
    direction = "DESC" if str(sort_order).lower() == "desc" else "ASC"

    where, params = _where_clause(filters)
    total = int(
        conn.execute(f"SELECT COUNT(*) AS n FROM programs WHERE {where}", params).fetchone()["n"]
    )
    rows = conn.execute(
        f"""
        SELECT * FROM programs
        WHERE {where}
        ORDER BY {column} {direction}, id ASC
        LIMIT ? OFFSET ?
        """,
        (*params, limit, (page - 1) * limit),
    ).fetchall()

    total_pages = math.ceil(total / limit) if total else 0
    return {
        "programs": [_program_row(row) for row in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_previous_page": page > 1,
        },
    }


def get_filter_options(gateway: PersistenceGateway, term_id: str) -> Dict[str, List[str]]:
    """Return the stored filter vocabulary for a term (empty lists if unseen)."""

    fields = gateway.get_filter_fields(term_id) or FilterFields()
    return {name: list(getattr(fields, name)) for name in FilterFields.FIELD_NAMES}


def get_program_stats(conn: sqlite3.Connection, term_id: str) -> Dict[str, Any]:
    """Aggregate fee and distribution statistics for a term's active programs."""

    row = conn.execute(
        """
        SELECT COUNT(*) AS total_programs,
               AVG(discounted_tuition_fee) AS avg_fee,
               MIN(discounted_tuition_fee) AS min_fee,
               MAX(discounted_tuition_fee) AS max_fee,
               COUNT(DISTINCT university_name) AS total_universities
        FROM programs
        WHERE term_id = ? AND is_active = 1
        """,
        (term_id,),
    ).fetchone()

    total = int(row["total_programs"] or 0)
    if total == 0:
        return {
            "term_id": term_id,
            "total_programs": 0,
            "avg_tuition_fee": 0,
            "min_tuition_fee": 0,
            "max_tuition_fee": 0,
            "total_universities": 0,
            "degree_distribution": {},
            "language_distribution": {},
        }

    def distribution(column: str) -> Dict[str, int]:
        cursor = conn.execute(
            f"""
            SELECT {column} AS value, COUNT(*) AS n
            FROM programs
            WHERE term_id = ? AND is_active = 1
            GROUP BY {column}
            ORDER BY n DESC, value ASC
            """,
            (term_id,),
        )
        return {str(item["value"]): int(item["n"]) for item in cursor.fetchall()}

    return {
        "term_id": term_id,
        "total_programs": total,
        "avg_tuition_fee": int(round(row["avg_fee"] or 0)),
        "min_tuition_fee": row["min_fee"] or 0,
        "max_tuition_fee": row["max_fee"] or 0,
        "total_universities": int(row["total_universities"] or 0),
        "degree_distribution": distribution("program_degree"),
        "language_distribution": distribution("language"),
    }


def get_programs_for_export(conn: sqlite3.Connection, term_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT * FROM programs
        WHERE term_id = ?
        ORDER BY university_name ASC, program_name ASC, id ASC
        """,
        (term_id,),
    ).fetchall()
    return [_program_row(row) for row in rows]


__all__ = [
    "ProgramFilters",
    "SORTABLE_COLUMNS",
    "list_programs",
    "get_filter_options",
    "get_program_stats",
    "get_programs_for_export",
]

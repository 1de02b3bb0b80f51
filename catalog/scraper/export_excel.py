"""Excel export of a term's scraped programs."""

from __future__ import annotations

import os
import sqlite3
from typing import Optional

import pandas as pd

from . import config
from .db_reporting import get_programs_for_export

EXPORT_COLUMNS = [
    "program_id",
    "program_name",
    "alternative_program_name",
    "university_name",
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
    "academic_year",
    "last_scraped",
]


def _safe_name(term_id: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in term_id) or "term"


def export_term_programs(
    conn: sqlite3.Connection, term_id: str, dest_path: Optional[str] = None
) -> str:
    """Write a workbook with all programs of ``term_id`` plus summary sheets.

    Raises ``LookupError`` when the term has no stored programs.
    """

    rows = get_programs_for_export(conn, term_id)
    if not rows:
        raise LookupError(f"No programs stored for term {term_id}")

    df = pd.DataFrame(rows)
    df = df[[column for column in EXPORT_COLUMNS if column in df.columns]]

    def summarise(by: str) -> pd.DataFrame:
        return (
            df.groupby(by)
            .agg(
                programs=("program_id", "count"),
                min_fee=("discounted_tuition_fee", "min"),
                max_fee=("discounted_tuition_fee", "max"),
            )
            .reset_index()
            .sort_values("programs", ascending=False)
        )

    summary_university = summarise("university_name")
    summary_degree = summarise("program_degree")

    if not dest_path:
        os.makedirs(config.EXPORTS_DIR, exist_ok=True)
        dest_path = os.path.join(config.EXPORTS_DIR, f"programs_{_safe_name(term_id)}.xlsx")

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Programs")
        summary_university.to_excel(writer, index=False, sheet_name="By_University")
        summary_degree.to_excel(writer, index=False, sheet_name="By_Degree")

    return str(dest_path)


__all__ = ["export_term_programs", "EXPORT_COLUMNS"]

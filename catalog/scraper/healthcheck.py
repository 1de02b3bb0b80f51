from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from . import config, db
from .config_validation import Entrypoint, validate_runtime_config
from .logging_utils import _scraper_event
from .utils import disk_has_room, ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(
    entrypoint: Entrypoint = "cli", conn: Optional[sqlite3.Connection] = None
) -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli")
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    ensure_dirs()
    checks["filesystem"] = {
        "ok": disk_has_room(config.MIN_FREE_MB, config.DATA_DIR),
        "data_dir": str(config.DATA_DIR),
        "min_free_mb": config.MIN_FREE_MB,
    }

    owned = conn is None
    try:
        if conn is None:
            conn = db.connect()
        db.initialize_schema(conn)
        row = conn.execute("SELECT COUNT(*) AS n FROM jobs").fetchone()
        checks["database"] = {"ok": True, "jobs": int(row["n"])}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"ok": False, "error": str(exc)}
    finally:
        if owned and conn is not None:
            conn.close()

    overall_ok = all(check.get("ok", False) for check in checks.values())
    _scraper_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )
    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)

from __future__ import annotations

import os
import threading
from typing import Any, Callable, Dict

from flask import Flask, Response, jsonify, request, send_file

from catalog.scraper import config, db, db_reporting
from catalog.scraper.config_validation import validate_runtime_config
from catalog.scraper.export_excel import export_term_programs
from catalog.scraper.gateway import SqliteGateway
from catalog.scraper.healthcheck import run_health_checks
from catalog.scraper.logging_utils import _scraper_event
from catalog.scraper.models import ProgramSearchOptions
from catalog.scraper.orchestrator import ScrapeOrchestrator
from catalog.scraper.utils import ensure_dirs, log_line, setup_run_logger

app = Flask(__name__)

# One SQLite handle for the whole process, shared with background scrape
# threads through the gateway's lock. Opened on import so WSGI entrypoints
# get the schema too.
ensure_dirs()
CONN = db.connect()
db.initialize_schema(CONN)
GATEWAY = SqliteGateway(CONN)

JOB_LIMIT_MAX = 200


def _build_orchestrator() -> ScrapeOrchestrator:
    return ScrapeOrchestrator(GATEWAY, config.browser_config())


def _start_background(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


def _get_admin_token() -> str | None:
    token = request.headers.get("X-Admin-Token")
    if not token:
        token = request.args.get("token")
    return token


def _parse_payload() -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    payload.update(request.args or {})
    if request.is_json:
        payload.update(request.get_json(silent=True) or {})
    else:
        payload.update(request.form or {})
    payload.pop("token", None)
    return payload


def _authorize_scrape(action: str) -> tuple[Response, int] | None:
    """Return an error response when the scrape request may not proceed."""

    if not config.ADMIN_TOKEN:
        return jsonify({"ok": False, "error": "scrape_disabled"}), 404

    if _get_admin_token() != config.ADMIN_TOKEN:
        _scraper_event("error", phase="api", action=action, error="invalid_token")
        return jsonify({"ok": False, "error": "invalid_token"}), 403

    try:
        validate_runtime_config("api", require_credentials=True)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "config_invalid", "details": str(exc)}), 500
    return None


def _launch(action: str, work: Callable[[ScrapeOrchestrator], Any]) -> None:
    def _run() -> None:
        with app.app_context():
            orchestrator = _build_orchestrator()
            try:
                setup_run_logger()
                orchestrator.initialize(config.credentials_from_env())
                result = work(orchestrator)
                log_line(f"[API] {action} finished: {result}")
            except Exception as exc:  # noqa: BLE001
                log_line(f"[API] {action} thread failed: {exc}")
            finally:
                orchestrator.close()

    _scraper_event("api", step="scrape_started", action=action)
    _start_background(_run)


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and DB."""

    with GATEWAY.lock:
        result = run_health_checks(entrypoint="api", conn=CONN)
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/jobs")
def api_jobs() -> Response:
    raw_limit = request.args.get("limit", default=config.DEFAULT_JOB_LIMIT, type=int)
    limit = max(1, min(raw_limit or config.DEFAULT_JOB_LIMIT, JOB_LIMIT_MAX))
    jobs = [job.to_dict() for job in GATEWAY.list_jobs(limit)]
    return jsonify({"ok": True, "count": len(jobs), "jobs": jobs})


@app.get("/api/jobs/<int:job_id>")
def api_job(job_id: int) -> Response:
    job = GATEWAY.get_job(job_id)
    if job is None:
        return jsonify({"ok": False, "error": "job_not_found", "job_id": job_id}), 404
    return jsonify({"ok": True, "job": job.to_dict()})


@app.get("/api/terms")
def api_terms() -> Response:
    terms = [term.to_dict() for term in GATEWAY.list_terms()]
    return jsonify({"ok": True, "count": len(terms), "terms": terms})


@app.get("/api/terms/<term_id>/filters")
def api_term_filters(term_id: str) -> Response:
    options = db_reporting.get_filter_options(GATEWAY, term_id)
    return jsonify({"ok": True, "term_id": term_id, **options})


@app.get("/api/terms/<term_id>/stats")
def api_term_stats(term_id: str) -> Response:
    with GATEWAY.lock:
        stats = db_reporting.get_program_stats(CONN, term_id)
    return jsonify({"ok": True, "stats": stats})


@app.get("/api/programs")
def api_programs() -> Response:
    try:
        filters = db_reporting.ProgramFilters.from_args(request.args)
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", db_reporting.DEFAULT_PAGE_SIZE))
    except ValueError as exc:
        return jsonify({"ok": False, "error": "invalid_params", "details": str(exc)}), 400

    with GATEWAY.lock:
        result = db_reporting.list_programs(
            CONN,
            filters,
            page=page,
            limit=limit,
            sort_by=request.args.get("sort_by", db_reporting.DEFAULT_SORT),
            sort_order=request.args.get("sort_order", "asc"),
        )
    return jsonify({"ok": True, **result})


@app.get("/api/terms/<term_id>/export.xlsx")
def api_export_term(term_id: str) -> Response:
    try:
        with GATEWAY.lock:
            path = export_term_programs(CONN, term_id)
    except LookupError:
        return jsonify({"ok": False, "error": "no_programs", "term_id": term_id}), 404
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


@app.post("/api/scrape/terms")
def api_scrape_terms() -> Response:
    denied = _authorize_scrape("discover_terms")
    if denied is not None:
        return denied

    user_id = str(_parse_payload().get("user_id") or "api")
    _launch("discover_terms", lambda orchestrator: orchestrator.scrape_and_save_terms(user_id))
    return jsonify({"ok": True, "action": "discover_terms"}), 202


@app.post("/api/scrape/terms/<term_id>")
def api_scrape_term(term_id: str) -> Response:
    denied = _authorize_scrape("scrape_term")
    if denied is not None:
        return denied

    if GATEWAY.get_term(term_id) is None:
        return jsonify({"ok": False, "error": "term_not_found", "term_id": term_id}), 404
    active = GATEWAY.find_active_job(term_id)
    if active is not None:
        return (
            jsonify({"ok": False, "error": "job_conflict", "term_id": term_id, "job_id": active.id}),
            409,
        )

    payload = _parse_payload()
    try:
        options = ProgramSearchOptions.from_mapping(payload)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "invalid_params", "details": str(exc)}), 400
    user_id = str(payload.get("user_id") or "api")

    _launch(
        f"scrape_term:{term_id}",
        lambda orchestrator: orchestrator.start_scraping_for_term(term_id, user_id, options),
    )
    return jsonify({"ok": True, "action": "scrape_term", "term_id": term_id}), 202


@app.post("/api/scrape/unscraped")
def api_scrape_unscraped() -> Response:
    denied = _authorize_scrape("scrape_unscraped")
    if denied is not None:
        return denied

    payload = _parse_payload()
    try:
        options = ProgramSearchOptions.from_mapping(payload)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "invalid_params", "details": str(exc)}), 400
    user_id = str(payload.get("user_id") or "api")
    pending = len(GATEWAY.list_unscraped_terms())

    _launch(
        "scrape_unscraped",
        lambda orchestrator: orchestrator.scrape_all_unscraped_terms(user_id, options),
    )
    return jsonify({"ok": True, "action": "scrape_unscraped", "terms": pending}), 202


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)

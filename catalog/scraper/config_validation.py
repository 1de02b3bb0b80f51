from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "api", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def validate_runtime_config(entrypoint: Entrypoint, *, require_credentials: bool = False) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    ``require_credentials`` is set by entry points that are about to log in.
    """

    delay_fields = [
        ("SCRAPER_BETWEEN_TERMS_DELAY_SECONDS", config.BETWEEN_TERMS_DELAY_SECONDS),
        ("SCRAPER_FILTER_SETTLE_SECONDS", config.FILTER_SETTLE_FALLBACK_SECONDS),
        ("SCRAPER_SEARCH_SETTLE_SECONDS", config.SEARCH_SETTLE_FALLBACK_SECONDS),
        ("SCRAPER_PAGE_SETTLE_SECONDS", config.PAGE_SETTLE_FALLBACK_SECONDS),
        ("SCRAPER_TYPING_DELAY_MS", config.TYPING_DELAY_MS),
    ]
    for field_name, value in delay_fields:
        if value < 0:
            _raise_config_error(
                f"{field_name} must be non-negative.",
                entrypoint=entrypoint,
                error="invalid_delay",
            )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must be non-negative.",
            entrypoint=entrypoint,
            error="min_free_mb_invalid",
        )

    if require_credentials:
        credentials = config.credentials_from_env()
        if not credentials.email or not credentials.password:
            _raise_config_error(
                "SCRAPER_EMAIL and SCRAPER_PASSWORD must be set to run a scrape.",
                entrypoint=entrypoint,
                error="missing_credentials",
            )

    if entrypoint == "api" and not config.ADMIN_TOKEN:
        _scraper_event(
            "state",
            phase="config",
            context="runtime_validation",
            kind="config_warning",
            field="CATALOG_ADMIN_TOKEN",
            entrypoint=entrypoint,
        )
        log_line("[CONFIG] CATALOG_ADMIN_TOKEN is not set; scrape endpoints are disabled.")


__all__ = ["validate_runtime_config", "Entrypoint"]

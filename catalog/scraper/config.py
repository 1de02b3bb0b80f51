"""Configuration constants for the partner program-catalog scraper."""
from __future__ import annotations

import os
from pathlib import Path

from .models import BrowserConfig, Credentials

DATA_DIR: Path = Path(os.getenv("CATALOG_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
SCREENSHOT_DIR: Path = DATA_DIR / "screenshots"
EXPORTS_DIR: Path = DATA_DIR / "exports"
DB_PATH: Path = DATA_DIR / "catalog.db"

PARTNER_BASE_URL: str = os.getenv(
    "PARTNER_BASE_URL", "https://partner.unitededucation.com"
).rstrip("/")
LOGIN_PATH: str = "/Account/Login"
LOGIN_URL: str = f"{PARTNER_BASE_URL}{LOGIN_PATH}/"
PROGRAM_SEARCH_URL: str = f"{PARTNER_BASE_URL}/Manage/ProgramSearch"


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _parse_float(env_var: str, default: float) -> float:
    try:
        return float(os.getenv(env_var, str(default)))
    except ValueError:
        return default


# Global operation timeout applied to every browser-level call.
OPERATION_TIMEOUT_SECONDS: int = _parse_timeout_seconds("SCRAPER_TIMEOUT_SECONDS", 60)
# Shorter waits for wizard steps that are allowed to be absent.
FILTERS_WAIT_SECONDS: int = _parse_timeout_seconds("SCRAPER_FILTERS_WAIT_SECONDS", 10)
PAGE_INFO_WAIT_SECONDS: int = _parse_timeout_seconds("SCRAPER_PAGE_INFO_WAIT_SECONDS", 10)

HEADLESS: bool = os.getenv("SCRAPER_HEADLESS", "true").strip().lower() not in {"0", "false", "no"}

# Delay inserted between terms of a batch run.
BETWEEN_TERMS_DELAY_SECONDS: float = _parse_float("SCRAPER_BETWEEN_TERMS_DELAY_SECONDS", 5.0)
# Last-resort fixed delays used when a condition wait cannot observe the signal.
FILTER_SETTLE_FALLBACK_SECONDS: float = _parse_float("SCRAPER_FILTER_SETTLE_SECONDS", 1.5)
SEARCH_SETTLE_FALLBACK_SECONDS: float = _parse_float("SCRAPER_SEARCH_SETTLE_SECONDS", 3.0)
PAGE_SETTLE_FALLBACK_SECONDS: float = _parse_float("SCRAPER_PAGE_SETTLE_SECONDS", 2.0)
# Per-character typing delay on the login form.
TYPING_DELAY_MS: int = int(_parse_float("SCRAPER_TYPING_DELAY_MS", 100))

ADMIN_TOKEN: str = os.getenv("CATALOG_ADMIN_TOKEN", "").strip()
MIN_FREE_MB: int = int(_parse_float("MIN_FREE_MB", 200))
DEFAULT_JOB_LIMIT: int = int(_parse_float("CATALOG_DEFAULT_JOB_LIMIT", 50))


def browser_config() -> BrowserConfig:
    """Return the browser configuration for entry points (CLI, web)."""

    return BrowserConfig(
        headless=HEADLESS,
        timeout_ms=OPERATION_TIMEOUT_SECONDS * 1000,
    )


def credentials_from_env() -> Credentials:
    """Return operator credentials for the partner portal.

    Only entry points call this; the scraping core receives credentials as an
    argument.
    """

    return Credentials(
        email=os.getenv("SCRAPER_EMAIL", "").strip(),
        password=os.getenv("SCRAPER_PASSWORD", ""),
    )

"""Login driver for the partner portal."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from . import config
from .errors import LoginError, ScraperTimeoutError
from .logging_utils import _scraper_event
from .models import Credentials
from .selectors_program_search import LOGIN_SELECTORS, LoginSelectors
from .session import BrowserSession
from .utils import log_line


class AuthState(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class Authenticator:
    """Drives the login form on an existing :class:`BrowserSession`.

    Authentication on the partner portal is only session-cookie state, so
    :meth:`logout` is a local reset plus session teardown.
    """

    def __init__(
        self,
        session: BrowserSession,
        credentials: Credentials,
        *,
        login_url: Optional[str] = None,
        login_path: Optional[str] = None,
        typing_delay_ms: Optional[int] = None,
        selectors: LoginSelectors = LOGIN_SELECTORS,
    ) -> None:
        self.session = session
        self.credentials = credentials
        self.login_url = login_url or config.LOGIN_URL
        self.login_path = login_path or config.LOGIN_PATH
        self.typing_delay_ms = config.TYPING_DELAY_MS if typing_delay_ms is None else typing_delay_ms
        self.selectors = selectors
        self.state = AuthState.NOT_AUTHENTICATED

    @property
    def is_logged_in(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    def login(self) -> bool:
        """Log in and return ``True``; raise :class:`LoginError` otherwise."""

        try:
            log_line("[AUTH] Starting login process...")
            self._validate_credentials()
            self.session.navigate_to(self.login_url)
            self.session.wait_for_selector(self.selectors.form)
            log_line("[AUTH] Login form found")
            self._fill_credentials()
            self._submit()
            self._verify()
        except LoginError:
            self.state = AuthState.FAILED
            raise
        except Exception as exc:  # noqa: BLE001
            self.state = AuthState.FAILED
            raise LoginError("Login failed", exc) from exc

        self.state = AuthState.AUTHENTICATED
        _scraper_event("auth", step="login_ok", url=self.session.current_url)
        log_line("[AUTH] Login successful")
        return True

    def logout(self) -> None:
        self.state = AuthState.NOT_AUTHENTICATED
        self.session.close()

    def _validate_credentials(self) -> None:
        if not self.credentials.email or not self.credentials.password:
            raise LoginError("Email and password are required")

    def _fill_credentials(self) -> None:
        self.session.wait_for_selector(self.selectors.email)
        self.session.type_text(self.selectors.email, self.credentials.email, self.typing_delay_ms)
        self.session.wait_for_selector(self.selectors.password)
        self.session.type_text(
            self.selectors.password, self.credentials.password, self.typing_delay_ms
        )
        log_line("[AUTH] Credentials entered")

    def _submit(self) -> None:
        try:
            self.session.click_and_wait_for_navigation(self.selectors.submit)
        except ScraperTimeoutError:
            # Some successful logins never fire a navigation event.
            log_line("[AUTH] Navigation timeout after submit; checking login status")

    def _verify(self) -> None:
        current_url = self.session.current_url
        log_line(f"[AUTH] Current URL after login: {current_url}")
        if self.login_path.lower() not in current_url.lower():
            return

        message = self.session.text_of(self.selectors.error)
        if message:
            raise LoginError(f"Login failed: {message}")
        raise LoginError("Login failed - still on login page")


__all__ = ["AuthState", "Authenticator"]

"""
Navigation to the call page and classification of where the browser ended up.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_session import BrowserSession
from extraction_config import ExtractionConfig
from extraction_errors import (
    AuthenticationRequiredError,
    NavigationError,
    NavigationTimeoutError,
    UnexpectedRedirectError,
)
from log_events import evt
from logging_setup import get_logger

logger = get_logger(__name__)

# Login forms expose at least one of these
AUTH_FORM_SELECTORS = [
    'input[type="email"]',
    'input[type="password"]',
    'input[name*="email" i]',
    'input[name*="password" i]',
    'input[autocomplete="current-password"]',
]


class NavigationOutcome(Enum):
    OK = "ok"
    AUTH_REQUIRED = "auth_required"
    UNEXPECTED_REDIRECT = "unexpected_redirect"


@dataclass(frozen=True)
class NavigationResult:
    outcome: NavigationOutcome
    requested_url: str
    final_url: str

    @property
    def ok(self) -> bool:
        return self.outcome is NavigationOutcome.OK


def _normalized_host(netloc: str) -> str:
    host = netloc.lower().split("@")[-1].split(":")[0]
    return host[4:] if host.startswith("www.") else host


def _normalized_path(path: str) -> str:
    return path.rstrip("/") or "/"


def matches_destination(requested_url: str, final_url: str, expected_pattern: Optional[str] = None) -> bool:
    """
    True when the browser settled on the expected call page.

    With an explicit pattern the final URL must match it; otherwise host and
    path must survive navigation (query, fragment and trailing slash ignored).
    """
    if expected_pattern:
        return re.search(expected_pattern, final_url or "") is not None

    requested = urlparse(requested_url)
    final = urlparse(final_url or "")
    return (
        _normalized_host(requested.netloc) == _normalized_host(final.netloc)
        and _normalized_path(requested.path) == _normalized_path(final.path)
    )


class NavigationController:
    """Drives the session's page to a URL and classifies the outcome."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

    async def navigate(self, session: BrowserSession, url: str, timeout_ms: Optional[int] = None) -> NavigationResult:
        """
        Load `url`, proceeding once the DOM is constructed.

        Network idle is never awaited; pages holding persistent connections
        would never reach it.

        Raises:
            NavigationTimeoutError: the load exceeded the timeout (retryable)
            NavigationError: the driver failed to load the page (retryable)
        """
        page = session.page
        timeout_ms = timeout_ms or self.config.navigation_timeout_ms

        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(f"Navigation exceeded {timeout_ms}ms: {str(e)[:200]}") from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation failed: {str(e)[:200]}") from e

        final_url = page.url
        if matches_destination(url, final_url, self.config.expected_url_pattern):
            result = NavigationResult(NavigationOutcome.OK, url, final_url)
        elif await self._has_auth_form(session):
            result = NavigationResult(NavigationOutcome.AUTH_REQUIRED, url, final_url)
        else:
            result = NavigationResult(NavigationOutcome.UNEXPECTED_REDIRECT, url, final_url)

        evt("navigation_complete",
            outcome=result.outcome.value,
            final_url=final_url,
            redirected=final_url != url)
        return result

    async def _has_auth_form(self, session: BrowserSession) -> bool:
        for selector in AUTH_FORM_SELECTORS:
            try:
                if await session.page.query_selector(selector) is not None:
                    evt("navigation_auth_indicator", selector=selector)
                    return True
            except PlaywrightError as e:
                # A probe that cannot run counts as "not found"
                evt("navigation_auth_probe_failed", selector=selector, detail=str(e)[:100])
        return False

    @staticmethod
    def raise_for_outcome(result: NavigationResult) -> None:
        """Convert a non-OK outcome into the matching extraction error."""
        if result.outcome is NavigationOutcome.AUTH_REQUIRED:
            raise AuthenticationRequiredError(
                f"Redirected to a login page: {result.final_url}", final_url=result.final_url)
        if result.outcome is NavigationOutcome.UNEXPECTED_REDIRECT:
            raise UnexpectedRedirectError(
                f"Redirected away from the call page: {result.final_url}", final_url=result.final_url)

"""
Browser session management.

One BrowserSession is an isolated headless Chromium process plus one context
and page, owned by exactly one extraction attempt. Sessions are never reused:
each attempt, including retries of the same request, gets a fresh one.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from extraction_config import ExtractionConfig
from log_events import evt
from logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class BrowserSession:
    """Handles for one attempt's browser; `page` is what the extractors use."""

    playwright: Optional[Playwright] = None
    browser: Optional[Browser] = None
    context: Optional[BrowserContext] = None
    page: Optional[Page] = None
    released: bool = field(default=False)

    @property
    def session_id(self) -> int:
        return id(self)


class BrowserSessionManager:
    """Acquires and releases browser sessions with guaranteed cleanup."""

    def __init__(self, config: Optional[ExtractionConfig] = None, playwright_factory=async_playwright):
        self.config = config or ExtractionConfig()
        self._playwright_factory = playwright_factory

    def launch_args(self) -> Dict[str, Any]:
        return {
            "headless": self.config.headless,
            "args": list(self.config.browser_args),
        }

    def context_args(self) -> Dict[str, Any]:
        return {
            "user_agent": self.config.user_agent,
            "viewport": self.config.viewport(),
            "locale": self.config.locale,
            "java_script_enabled": True,
        }

    async def acquire(self) -> BrowserSession:
        """
        Launch a browser and open one context and page.

        If any step fails, whatever was already opened is released before the
        error propagates.
        """
        session = BrowserSession()
        try:
            session.playwright = await self._playwright_factory().start()
            session.browser = await session.playwright.chromium.launch(**self.launch_args())
            session.context = await session.browser.new_context(**self.context_args())
            session.context.set_default_timeout(self.config.page_load_timeout_ms)
            session.context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
            session.page = await session.context.new_page()
        except BaseException as e:
            # Includes cancellation: a half-open browser must not outlive the attempt
            evt("browser_session_acquire_failed",
                session_id=session.session_id,
                error_type=type(e).__name__,
                detail=str(e)[:200])
            await self.release(session)
            raise

        evt("browser_session_opened",
            session_id=session.session_id,
            headless=self.config.headless)
        return session

    async def release(self, session: Optional[BrowserSession]) -> None:
        """
        Close page, context, browser and driver. Best effort: closure failures
        are logged, never raised. Releasing twice is a no-op.
        """
        if session is None or session.released:
            return
        session.released = True

        closers = (
            ("page", session.page, "close"),
            ("context", session.context, "close"),
            ("browser", session.browser, "close"),
            ("playwright", session.playwright, "stop"),
        )
        failures = 0
        for name, handle, method in closers:
            if handle is None:
                continue
            try:
                await getattr(handle, method)()
            except Exception as e:
                failures += 1
                logger.warning(f"browser_session: {name} {method} failed: {type(e).__name__}")
                evt("browser_session_close_failed",
                    session_id=session.session_id,
                    resource=name,
                    error_type=type(e).__name__,
                    detail=str(e)[:200])

        evt("browser_session_released",
            session_id=session.session_id,
            close_failures=failures)

    @asynccontextmanager
    async def session(self):
        """Scoped acquisition: the session is released on every exit path."""
        browser_session = await self.acquire()
        try:
            yield browser_session
        finally:
            await self.release(browser_session)

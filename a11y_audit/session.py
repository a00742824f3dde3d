"""Playwright session lifecycle: acquire, configure, release."""

from __future__ import annotations

from typing import Any

from playwright.async_api import async_playwright

from .config import RunConfig
from .logs import emit
from .models import Session, Subscription


class BrowserSessionManager:
    """Manage browser/page acquisition and teardown for one audit run."""

    async def start(self, session: Session, config: RunConfig) -> Session:
        """Fill ``session`` with a browser and page, launching what was not borrowed.

        The session is mutated in place so that a failure part-way through
        still leaves ``shutdown`` enough to release what was acquired.
        """
        log = config.log
        if config.browser is not None:
            emit(
                log,
                "debug",
                "Using a pre-configured browser instance, "
                "the launch options will be ignored",
            )
            session.browser = config.browser
            session.owns_engine = False
        else:
            emit(log, "debug", "Launching headless Chromium")
            session.playwright = await async_playwright().start()
            session.owns_engine = True
            session.browser = await session.playwright.chromium.launch(
                headless=bool(config.headless),
                args=list(config.launch_args),
            )

        if config.page is not None:
            session.page = config.page
            session.owns_page = False
        else:
            session.page = await session.browser.new_page(
                user_agent=config.user_agent or None,
                viewport=config.viewport.as_dict(),
                ignore_https_errors=bool(config.ignore_https_errors),
            )
            session.owns_page = True

        await self.configure_page(session, config)
        return session

    async def configure_page(self, session: Session, config: RunConfig) -> None:
        """Attach the console listener and size the page.

        Owned pages already carry the user agent and viewport from
        ``new_page``. A borrowed page only has its viewport changed, and the
        caller's viewport is put back by ``shutdown``.
        """
        log = config.log
        page = session.page

        def _on_console(message: Any) -> None:
            emit(log, "debug", "Browser Console: %s", message.text)

        await session.subscribe(Subscription(page, "console", _on_console))

        if session.owns_page:
            page.set_default_timeout(float(config.timeout_ms))
            page.set_default_navigation_timeout(float(config.timeout_ms))
            return

        session.restore_viewport = page.viewport_size
        await page.set_viewport_size(config.viewport.as_dict())

    async def shutdown(self, session: Session, log: Any) -> None:
        """Release what the session owns; cleanup failures are logged, never raised."""
        if session.closed:
            return
        session.closed = True

        if session.owns_engine:
            if session.browser is not None:
                try:
                    await session.browser.close()
                except Exception as e:
                    emit(log, "error", "Error closing browser: %s", e)
            if session.playwright is not None:
                try:
                    await session.playwright.stop()
                except Exception as e:
                    emit(log, "error", "Error stopping Playwright: %s", e)
        elif session.page is not None:
            for subscription in reversed(session.subscriptions):
                try:
                    await subscription.cancel()
                except Exception as e:
                    emit(log, "error", "Error removing %s listener: %s", subscription.event, e)
            if session.owns_page:
                try:
                    await session.page.close()
                except Exception as e:
                    emit(log, "error", "Error closing page: %s", e)
            elif session.restore_viewport is not None:
                try:
                    await session.page.set_viewport_size(session.restore_viewport)
                except Exception as e:
                    emit(log, "error", "Error restoring viewport: %s", e)

        session.subscriptions.clear()

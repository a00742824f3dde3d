"""Audit pipeline: acquire, navigate, act, inject, evaluate, capture, release."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

from playwright.async_api import Error as PlaywrightError

from .config import RunConfig, sanitize_url, validate_config
from .errors import AuditTimeoutError, EvaluationError
from .logs import emit
from .models import Result, Session
from .navigation import NavigationController
from .page_actions import ActionInterpreter
from .payloads import ScriptInjector
from .request_interceptor import FirstRequestInterceptor
from .session import BrowserSessionManager

T = TypeVar("T")

CANCEL_GRACE_S = 1.0

_RUN_EVALUATION_JS = "options => window.__a11yAudit.run(options)"


async def guard_deadline(awaitable: Awaitable[T], timeout_ms: int) -> T:
    """Wait for ``awaitable`` until the deadline, then stop waiting.

    On expiry the pipeline task is cancelled at its next suspension point;
    whatever the browser is doing for it is left to finish on its own. The
    task then gets up to ``CANCEL_GRACE_S`` to unwind, so ``AuditTimeoutError``
    can surface that much later than ``timeout_ms``; its message still names
    the configured bound.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()
    task.cancel()
    # Let the pipeline unwind before cleanup runs.
    await asyncio.wait({task}, timeout=CANCEL_GRACE_S)
    task.add_done_callback(_consume_outcome)
    raise AuditTimeoutError(timeout_ms)


def _consume_outcome(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class AccessibilityAutomation:
    """Run one accessibility audit against one URL."""

    def __init__(
        self,
        *,
        session_manager: Optional[BrowserSessionManager] = None,
        navigation: Optional[NavigationController] = None,
        injector: Optional[ScriptInjector] = None,
    ):
        self.session_manager = session_manager or BrowserSessionManager()
        self.navigation = navigation
        self.injector = injector

    async def run(self, url: Optional[str], config: Optional[RunConfig] = None) -> Result:
        """Execute the full pipeline under a deadline and always release the session."""
        config = config or RunConfig()
        session = Session()
        try:
            validate_config(config, self.injector.evaluators if self.injector is not None else None)
            target = url if config.ignore_url and not url else sanitize_url(url or "")
            return await guard_deadline(self._run_pipeline(target, config, session), config.timeout_ms)
        finally:
            await self.session_manager.shutdown(session, config.log)

    async def _run_pipeline(self, url: Optional[str], config: RunConfig, session: Session) -> Result:
        log = config.log
        emit(log, "info", "Running audit on URL %s", url)

        await self.session_manager.start(session, config)

        headers = dict(config.headers)
        if config.user_agent and not session.owns_page:
            # Borrowed pages keep their extra headers; the agent rides on the first request.
            headers = {"user-agent": config.user_agent, **headers}
        interceptor = FirstRequestInterceptor(
            method=config.method,
            headers=headers,
            post_data=config.post_data,
            log=log,
        )
        await interceptor.install(session)

        if not config.ignore_url:
            navigation = self.navigation or NavigationController(log)
            await navigation.goto(session.page, url, config.timeout_ms)

        await ActionInterpreter(log).run_all(session.page, config.actions, config.timeout_ms)

        injector = self.injector or ScriptInjector(log=log)
        await injector.inject(session.page, config.runners)

        emit(log, "debug", "Running evaluation on the page")
        if config.wait_ms > 0:
            emit(log, "debug", "Waiting for %sms", config.wait_ms)
        result = await self._evaluate(session.page, config)
        emit(log, "debug", 'Document title: "%s"', result.document_title)

        await self._save_screen_capture(session.page, config)
        return result

    async def _evaluate(self, page: Any, config: RunConfig) -> Result:
        try:
            payload = await page.evaluate(_RUN_EVALUATION_JS, config.evaluation_options())
        except PlaywrightError as e:
            raise EvaluationError(f"Evaluation failed in page: {e.message}") from e
        if not isinstance(payload, dict):
            raise EvaluationError(f"Evaluation returned an unexpected value: {payload!r}")
        return Result.from_payload(payload)

    async def _save_screen_capture(self, page: Any, config: RunConfig) -> None:
        if not config.screen_capture:
            return
        log = config.log
        emit(log, "info", 'Capturing screen, saving to "%s"', config.screen_capture)
        try:
            await page.screenshot(path=config.screen_capture, full_page=True)
        except Exception as e:
            emit(log, "error", "Error capturing screen: %s", e)


async def run_audit(url: Optional[str], config: Optional[RunConfig] = None, **options: Any) -> Result:
    """Audit ``url`` with ``config`` (or defaults) updated by keyword options."""
    base = config or RunConfig()
    if options:
        base = base.with_options(**options)
    return await AccessibilityAutomation().run(url, base)

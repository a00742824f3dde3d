"""Navigate a page and wait for its network to settle."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import NavigationError
from .logs import emit

MAX_INFLIGHT_REQUESTS = 2
QUIET_WINDOW_MS = 500


class NetworkIdleWatcher:
    """Track in-flight requests and flag when the page has gone quiet.

    Requests are counted from ``attach`` on, but the quiet window only starts
    once ``arm`` is called. Idle is withdrawn again whenever the in-flight
    count climbs above ``max_inflight``.
    """

    def __init__(
        self,
        page: Any,
        *,
        max_inflight: int = MAX_INFLIGHT_REQUESTS,
        quiet_ms: int = QUIET_WINDOW_MS,
    ):
        self.page = page
        self.max_inflight = int(max_inflight)
        self.quiet_ms = int(quiet_ms)
        self._inflight: Set[Any] = set()
        self._idle = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._attached = False
        self._armed = False

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    @property
    def idle(self) -> bool:
        return self._idle.is_set()

    def attach(self) -> None:
        if self._attached:
            return
        self._loop = asyncio.get_running_loop()
        self.page.on("request", self._on_request)
        self.page.on("requestfinished", self._on_request_done)
        self.page.on("requestfailed", self._on_request_done)
        self._attached = True

    def arm(self) -> None:
        if not self._attached or self._armed:
            return
        self._armed = True
        self._reschedule()

    def detach(self) -> None:
        if not self._attached:
            return
        for evt, handler in (
            ("request", self._on_request),
            ("requestfinished", self._on_request_done),
            ("requestfailed", self._on_request_done),
        ):
            self.page.remove_listener(evt, handler)
        self._cancel_timer()
        self._attached = False
        self._armed = False

    async def wait(self, timeout_s: float) -> None:
        await asyncio.wait_for(self._settled(), timeout=max(0.0, timeout_s))

    async def _settled(self) -> None:
        # The flag may be withdrawn between the wake-up and this check.
        while True:
            await self._idle.wait()
            if self._idle.is_set():
                return

    def _on_request(self, request: Any) -> None:
        self._inflight.add(request)
        self._reschedule()

    def _on_request_done(self, request: Any) -> None:
        self._inflight.discard(request)
        self._reschedule()

    def _reschedule(self) -> None:
        if not self._armed or self._loop is None:
            return
        if len(self._inflight) > self.max_inflight:
            self._cancel_timer()
            self._idle.clear()
            return
        if self._idle.is_set() or self._timer is not None:
            return
        self._timer = self._loop.call_later(self.quiet_ms / 1000.0, self._on_quiet)

    def _on_quiet(self) -> None:
        self._timer = None
        self._idle.set()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class NavigationController:
    """Drive a page to the target URL."""

    def __init__(self, log: Any = None, *, quiet_ms: int = QUIET_WINDOW_MS):
        self.log = log
        self.quiet_ms = quiet_ms

    async def goto(self, page: Any, url: str, timeout_ms: int) -> None:
        emit(self.log, "debug", "Opening URL %s", url)
        watcher = NetworkIdleWatcher(page, quiet_ms=self.quiet_ms)
        watcher.attach()
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                raise NavigationError(
                    f"Navigation to {url} did not settle within {timeout_ms}ms",
                    url=url,
                    timeout_ms=timeout_ms,
                ) from e
            except PlaywrightError as e:
                raise NavigationError(f"Navigation to {url} failed: {e.message}", url=url) from e

            watcher.arm()

            remaining = timeout_ms / 1000.0 - (loop.time() - started)
            try:
                await watcher.wait(remaining)
            except asyncio.TimeoutError as e:
                raise NavigationError(
                    f"Navigation to {url} did not settle within {timeout_ms}ms "
                    f"({watcher.inflight} requests still in flight)",
                    url=url,
                    timeout_ms=timeout_ms,
                ) from e
        finally:
            watcher.detach()

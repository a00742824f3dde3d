from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from a11y_audit.automation import _RUN_EVALUATION_JS
from a11y_audit.payloads import EvaluatorDescriptor, EvaluatorRegistry, PayloadCache


class FakeRequest:
    def __init__(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.method = method
        self.headers = dict(headers or {"accept": "text/html"})

    async def all_headers(self) -> Dict[str, str]:
        return dict(self.headers)


class FakeRoute:
    def __init__(self, request: FakeRequest):
        self.request = request
        self.continued_with: Optional[Dict[str, Any]] = None

    async def continue_(self, **overrides: Any) -> None:
        self.continued_with = overrides


class FakeElement:
    def __init__(
        self,
        *,
        visible: bool = True,
        enabled: bool = True,
        on_click: Optional[Callable[[], Awaitable[None]]] = None,
        options: Optional[List[str]] = None,
    ):
        self.visible = visible
        self.enabled = enabled
        self.on_click = on_click
        self.options = list(options or [])
        self.clicks = 0
        self.evaluated: List[Any] = []
        self.selected: Optional[str] = None

    async def click(self, timeout: Optional[float] = None) -> None:
        self.clicks += 1
        if self.on_click is not None:
            await self.on_click()

    async def evaluate(self, script: str, arg: Any = None) -> None:
        self.evaluated.append((script, arg))

    async def select_option(self, value: Optional[str] = None, timeout: Optional[float] = None) -> List[str]:
        if value not in self.options:
            raise PlaywrightTimeoutError(f"no option {value}")
        self.selected = value
        return [value]

    async def is_visible(self) -> bool:
        return self.visible

    async def is_enabled(self) -> bool:
        return self.enabled


class FakePage:
    """In-memory stand-in for a Playwright page."""

    def __init__(self, **options: Any):
        self.url = "about:blank"
        self.options = options
        self.listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self.routes: List[Any] = []
        self.elements: Dict[str, FakeElement] = {}
        self.invalid_selectors: set = set()
        self.location: Dict[str, str] = {"hash": "", "pathname": "/", "host": "example.com", "href": ""}
        self.goto_calls: List[Dict[str, Any]] = []
        self.goto_delay = 0.0
        self.goto_error: Optional[Exception] = None
        self.finish_requests = True
        self.evaluated: List[Any] = []
        self.evaluation_result: Any = {"documentTitle": "Test page", "pageUrl": "", "issues": []}
        self.evaluation_error: Optional[Exception] = None
        self.screenshots: List[Dict[str, Any]] = []
        self.screenshot_error: Optional[Exception] = None
        self.selector_waits: Dict[str, bool] = {}
        self.function_waits_succeed = True
        self.requests_seen: List[FakeRoute] = []
        self.extra_headers: Dict[str, str] = {}
        self.viewport: Optional[Dict[str, int]] = None
        self.viewport_calls: List[Dict[str, int]] = []
        self.default_timeout: Optional[float] = None
        self.closed = False
        self.events: List[str] = []

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners[event].remove(handler)

    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values()) + len(self.routes)

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self.listeners[event]):
            handler(payload)

    async def route(self, pattern: str, handler: Callable[..., Any]) -> None:
        self.routes.append((pattern, handler))

    async def unroute(self, pattern: str, handler: Callable[..., Any]) -> None:
        self.routes.remove((pattern, handler))

    async def simulate_request(self, url: str, method: str = "GET") -> FakeRoute:
        request = FakeRequest(url, method)
        route = FakeRoute(request)
        self.emit("request", request)
        for _, handler in list(self.routes):
            await handler(route)
        self.requests_seen.append(route)
        if self.finish_requests:
            self.emit("requestfinished", request)
        return route

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.events.append("goto")
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        await self.simulate_request(url)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        if script == _RUN_EVALUATION_JS:
            self.events.append("evaluate")
            self.evaluation_options = arg
            if self.evaluation_error is not None:
                raise self.evaluation_error
            return self.evaluation_result
        if "window.location." in script:
            prop = script.rsplit(".", 1)[-1]
            return self.location.get(prop)
        return None

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        if selector in self.invalid_selectors:
            raise PlaywrightError(f"{selector} is not a valid selector")
        return self.elements.get(selector)

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: Optional[float] = None) -> None:
        if selector in self.invalid_selectors:
            raise PlaywrightError(f"{selector} is not a valid selector")
        if not self.selector_waits.get(selector, False):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def wait_for_function(self, script: str, arg: Any = None, polling: Any = None, timeout: Any = None) -> None:
        if not self.function_waits_succeed:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False, timeout: Any = None) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        self.screenshots.append({"path": path, "full_page": full_page})
        return b""

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        self.extra_headers = dict(headers)

    @property
    def viewport_size(self) -> Optional[Dict[str, int]]:
        return dict(self.viewport) if self.viewport is not None else None

    async def set_viewport_size(self, viewport: Dict[str, int]) -> None:
        self.viewport = dict(viewport)
        self.viewport_calls.append(dict(viewport))

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self) -> None:
        self.pages: List[FakePage] = []
        self.close_calls = 0

    async def new_page(self, **options: Any) -> FakePage:
        page = FakePage(**options)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.close_calls += 1


class RecordingLog:
    def __init__(self) -> None:
        self.records: List[tuple] = []

    def _record(self, level: str, msg: str, *args: Any) -> None:
        self.records.append((level, msg % args if args else msg))

    def debug(self, msg: str, *args: Any) -> None:
        self._record("debug", msg, *args)

    def info(self, msg: str, *args: Any) -> None:
        self._record("info", msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        self._record("error", msg, *args)

    def messages(self, level: str) -> List[str]:
        return [text for lvl, text in self.records if lvl == level]


def make_descriptor(name: str, supports: str = ">=1.0,<2") -> EvaluatorDescriptor:
    return EvaluatorDescriptor(
        name=name,
        supports=supports,
        scripts=(f"{name}.js",),
        run_source=f"async function run{name.title()}() {{ return []; }}",
    )


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def log() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def evaluators() -> EvaluatorRegistry:
    registry = EvaluatorRegistry(entry_point_group=None)
    registry.register(make_descriptor("htmlcs"))
    registry.register(make_descriptor("axe"))
    return registry


@pytest.fixture
def script_reads() -> List[str]:
    return []


@pytest.fixture
def cache(script_reads: List[str]) -> PayloadCache:
    def _reader(source: str) -> str:
        script_reads.append(source)
        return f"/* {source} */"

    return PayloadCache(reader=_reader)

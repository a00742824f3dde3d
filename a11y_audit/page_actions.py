"""Scripted page actions: parsing and execution."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import ActionError
from .logs import emit
from .models import (
    Action,
    CheckField,
    ClearFieldValue,
    ClickElement,
    NavigateTo,
    ScreenCapture,
    SelectOption,
    SetFieldValue,
    WaitForDuration,
    WaitForElementEvent,
    WaitForElementState,
    WaitForUrl,
)

POLL_INTERVAL_MS = 200

# Public element states mapped to Playwright's wait_for_selector states.
ELEMENT_STATES: Dict[str, str] = {
    "added": "attached",
    "removed": "detached",
    "visible": "visible",
    "hidden": "hidden",
}

# URL subjects mapped to the window.location property they read.
URL_SUBJECTS: Dict[str, str] = {
    "fragment": "hash",
    "hash": "hash",
    "host": "host",
    "path": "pathname",
    "url": "href",
}

PRECONDITIONS = {"visible", "enabled"}

_SET_VALUE_JS = """(el, value) => {
    el.value = value;
    el.dispatchEvent(new Event('input', {bubbles: true}));
}"""

_SET_CHECKED_JS = """(el, checked) => {
    el.checked = checked;
    el.dispatchEvent(new Event('change', {bubbles: true}));
}"""

_ARM_EVENT_JS = """(el, name) => {
    el.__a11yAuditEvents = el.__a11yAuditEvents || {};
    el.__a11yAuditEvents[name] = false;
    el.addEventListener(name, () => { el.__a11yAuditEvents[name] = true; }, {once: true});
}"""

_EVENT_FIRED_JS = """([el, name]) => Boolean(el.__a11yAuditEvents && el.__a11yAuditEvents[name])"""

_STRING_PATTERNS: List[Tuple[re.Pattern[str], Callable[[re.Match[str]], Action]]] = [
    (
        re.compile(r"^click(?: element)? (?P<selector>.+)$", re.I),
        lambda m: ClickElement(selector=m["selector"].strip()),
    ),
    (
        re.compile(r"^set field (?P<selector>.+?) to (?P<value>.*)$", re.I),
        lambda m: SetFieldValue(selector=m["selector"].strip(), value=m["value"]),
    ),
    (
        re.compile(r"^clear field (?P<selector>.+)$", re.I),
        lambda m: ClearFieldValue(selector=m["selector"].strip()),
    ),
    (
        re.compile(r"^(?P<mode>check|uncheck) field (?P<selector>.+)$", re.I),
        lambda m: CheckField(selector=m["selector"].strip(), checked=m["mode"].lower() == "check"),
    ),
    (
        re.compile(r"^select (?P<selector>.+?) option (?P<value>.+)$", re.I),
        lambda m: SelectOption(selector=m["selector"].strip(), value=m["value"].strip()),
    ),
    (
        re.compile(r"^wait for element (?P<selector>.+?) to be (?P<state>added|removed|visible|hidden)$", re.I),
        lambda m: WaitForElementState(selector=m["selector"].strip(), state=m["state"].lower()),
    ),
    (
        re.compile(r"^wait for element (?P<selector>.+?) to emit (?P<event>.+)$", re.I),
        lambda m: WaitForElementEvent(selector=m["selector"].strip(), event=m["event"].strip()),
    ),
    (
        re.compile(r"^wait for (?P<subject>fragment|hash|host|path|url) to (?P<negated>not )?be (?P<value>.+)$", re.I),
        lambda m: WaitForUrl(
            subject=m["subject"].lower(),
            value=m["value"].strip(),
            negated=bool(m["negated"]),
        ),
    ),
    (
        re.compile(r"^wait for (?P<duration>\d+)\s*ms$", re.I),
        lambda m: WaitForDuration(duration_ms=int(m["duration"])),
    ),
    (
        re.compile(r"^navigate to (?P<url>.+)$", re.I),
        lambda m: NavigateTo(url=m["url"].strip()),
    ),
    (
        re.compile(r"^screen ?capture (?P<path>.+)$", re.I),
        lambda m: ScreenCapture(path=m["path"].strip()),
    ),
]

ActionLike = Union[Action, str, Mapping[str, Any]]


def parse_action(value: ActionLike) -> Action:
    """Parse a string or mapping into an immutable action.

    Raises ValueError when the value does not describe a known action.
    """
    if isinstance(value, Action):
        return value
    if isinstance(value, str):
        text = value.strip()
        for pattern, build in _STRING_PATTERNS:
            match = pattern.match(text)
            if match:
                return build(match)
        raise ValueError(f'Unrecognised action "{text}"')
    if isinstance(value, Mapping):
        return _parse_mapping(value)
    raise ValueError(f"Unsupported action type: {type(value).__name__}")


def is_valid_action(value: Any) -> bool:
    try:
        parse_action(value)
    except (ValueError, TypeError):
        return False
    return True


def describe_action(action: Action) -> str:
    target = getattr(action, "selector", None) or getattr(action, "url", None) or getattr(action, "path", None)
    if isinstance(action, WaitForUrl):
        target = f"{action.subject} {'!=' if action.negated else '=='} {action.value}"
    if isinstance(action, WaitForDuration):
        target = f"{action.duration_ms}ms"
    return f"{action.kind} {target}" if target else action.kind


def _parse_mapping(data: Mapping[str, Any]) -> Action:
    kind = str(data.get("kind") or data.get("type") or "").strip().lower()
    timeout_ms = _optional_int(data.get("timeout_ms", data.get("timeout")))
    selector = str(data.get("selector") or "").strip()
    precondition = data.get("precondition")
    if precondition is not None:
        precondition = str(precondition).strip().lower()
        if precondition not in PRECONDITIONS:
            raise ValueError(f'Unsupported precondition "{precondition}"')

    if kind in {"click-element", "set-field-value", "clear-field-value", "check-field", "uncheck-field",
                "select-option", "wait-for-element-state", "wait-for-element-event"} and not selector:
        raise ValueError(f'Action "{kind}" requires a selector')

    if kind == "click-element":
        return ClickElement(selector=selector, precondition=precondition, timeout_ms=timeout_ms)
    if kind == "set-field-value":
        return SetFieldValue(
            selector=selector,
            value=str(data.get("value") or ""),
            precondition=precondition,
            timeout_ms=timeout_ms,
        )
    if kind == "clear-field-value":
        return ClearFieldValue(selector=selector, precondition=precondition, timeout_ms=timeout_ms)
    if kind in {"check-field", "uncheck-field"}:
        checked = bool(data.get("checked", kind == "check-field"))
        return CheckField(selector=selector, checked=checked, precondition=precondition, timeout_ms=timeout_ms)
    if kind == "select-option":
        value = str(data.get("value") or "").strip()
        if not value:
            raise ValueError('Action "select-option" requires a value')
        return SelectOption(selector=selector, value=value, precondition=precondition, timeout_ms=timeout_ms)
    if kind == "wait-for-element-state":
        state = str(data.get("state") or "").strip().lower()
        if state not in ELEMENT_STATES:
            raise ValueError(f'Unsupported element state "{state}"')
        return WaitForElementState(selector=selector, state=state, timeout_ms=timeout_ms)
    if kind == "wait-for-element-event":
        event = str(data.get("event") or "").strip()
        if not event:
            raise ValueError('Action "wait-for-element-event" requires an event')
        return WaitForElementEvent(selector=selector, event=event, timeout_ms=timeout_ms)
    if kind == "wait-for-url":
        subject = str(data.get("subject") or "url").strip().lower()
        if subject not in URL_SUBJECTS:
            raise ValueError(f'Unsupported URL subject "{subject}"')
        return WaitForUrl(
            subject=subject,
            value=str(data.get("value") or ""),
            negated=bool(data.get("negated", False)),
            timeout_ms=timeout_ms,
        )
    if kind == "wait-for-duration":
        duration = _optional_int(data.get("duration_ms", data.get("duration")))
        if duration is None or duration < 0:
            raise ValueError('Action "wait-for-duration" requires a non-negative duration')
        return WaitForDuration(duration_ms=duration)
    if kind == "navigate-url":
        url = str(data.get("url") or "").strip()
        if not url:
            raise ValueError('Action "navigate-url" requires a url')
        return NavigateTo(url=url, timeout_ms=timeout_ms)
    if kind == "screen-capture":
        path = str(data.get("path") or "").strip()
        if not path:
            raise ValueError('Action "screen-capture" requires a path')
        return ScreenCapture(path=path, timeout_ms=timeout_ms)
    raise ValueError(f'Unrecognised action kind "{kind}"')


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


class ActionInterpreter:
    """Execute parsed actions against a live page, strictly in order."""

    def __init__(self, log: Any = None):
        self.log = log

    async def run_all(self, page: Any, actions: Iterable[Action], default_timeout_ms: int) -> None:
        actions = list(actions)
        if not actions:
            return
        self._info("Running actions")
        for action in actions:
            await self.execute(page, action, default_timeout_ms)
        self._info("Finished running actions")

    async def execute(self, page: Any, action: Action, default_timeout_ms: int) -> None:
        handler = self._handlers().get(type(action))
        if handler is None:
            raise ActionError(action, "unsupported action")
        timeout_ms = int(getattr(action, "timeout_ms", None) or default_timeout_ms)
        self._debug("Running action: %s", describe_action(action))
        await handler(page, action, timeout_ms)

    def _handlers(self) -> Dict[type, Callable[..., Any]]:
        return {
            ClickElement: self._click_element,
            SetFieldValue: self._set_field_value,
            ClearFieldValue: self._clear_field_value,
            CheckField: self._check_field,
            SelectOption: self._select_option,
            WaitForElementState: self._wait_for_element_state,
            WaitForUrl: self._wait_for_url,
            WaitForElementEvent: self._wait_for_element_event,
            WaitForDuration: self._wait_for_duration,
            NavigateTo: self._navigate_to,
            ScreenCapture: self._screen_capture,
        }

    async def _click_element(self, page: Any, action: ClickElement, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        try:
            await element.click(timeout=timeout_ms)
        except PlaywrightError as e:
            raise ActionError(
                action, f'could not click element matching selector "{action.selector}": {e.message}'
            ) from e

    async def _set_field_value(self, page: Any, action: SetFieldValue, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        await self._evaluate_on(action, element, _SET_VALUE_JS, action.value)

    async def _clear_field_value(self, page: Any, action: ClearFieldValue, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        await self._evaluate_on(action, element, _SET_VALUE_JS, "")

    async def _check_field(self, page: Any, action: CheckField, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        await self._evaluate_on(action, element, _SET_CHECKED_JS, bool(action.checked))

    async def _select_option(self, page: Any, action: SelectOption, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        try:
            await element.select_option(value=action.value, timeout=timeout_ms)
        except PlaywrightError as e:
            raise ActionError(
                action, f'no option "{action.value}" in element matching selector "{action.selector}"'
            ) from e

    async def _wait_for_element_state(self, page: Any, action: WaitForElementState, timeout_ms: int) -> None:
        try:
            await page.wait_for_selector(
                action.selector,
                state=ELEMENT_STATES[action.state],
                timeout=timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise ActionError(
                action,
                f'element matching selector "{action.selector}" was not {action.state} within {timeout_ms}ms',
            ) from e
        except PlaywrightError as e:
            raise ActionError(action, f'invalid selector "{action.selector}"') from e

    async def _wait_for_url(self, page: Any, action: WaitForUrl, timeout_ms: int) -> None:
        prop = URL_SUBJECTS[action.subject]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        while True:
            try:
                current = await page.evaluate(f"() => window.location.{prop}")
            except PlaywrightError:
                # Execution context is replaced mid-navigation; try again next tick.
                current = None
            if current is not None and (str(current) == action.value) != action.negated:
                return
            if loop.time() >= deadline:
                expectation = "stop being" if action.negated else "become"
                raise ActionError(
                    action,
                    f'{action.subject} did not {expectation} "{action.value}" within {timeout_ms}ms',
                )
            await asyncio.sleep(POLL_INTERVAL_MS / 1000.0)

    async def _wait_for_element_event(self, page: Any, action: WaitForElementEvent, timeout_ms: int) -> None:
        element = await self._resolve_element(page, action, action.selector, timeout_ms)
        await self._evaluate_on(action, element, _ARM_EVENT_JS, action.event)
        try:
            await page.wait_for_function(
                _EVENT_FIRED_JS,
                arg=[element, action.event],
                polling=POLL_INTERVAL_MS,
                timeout=timeout_ms,
            )
        except PlaywrightError as e:
            raise ActionError(
                action,
                f'element matching selector "{action.selector}" did not emit "{action.event}" within {timeout_ms}ms',
            ) from e

    async def _wait_for_duration(self, page: Any, action: WaitForDuration, timeout_ms: int) -> None:
        await asyncio.sleep(max(0, int(action.duration_ms)) / 1000.0)

    async def _navigate_to(self, page: Any, action: NavigateTo, timeout_ms: int) -> None:
        try:
            await page.goto(action.url, timeout=timeout_ms)
        except PlaywrightError as e:
            raise ActionError(action, f'could not navigate to "{action.url}": {e.message}') from e

    async def _screen_capture(self, page: Any, action: ScreenCapture, timeout_ms: int) -> None:
        try:
            await page.screenshot(path=action.path, full_page=True, timeout=timeout_ms)
        except PlaywrightError as e:
            raise ActionError(action, f'could not capture screen to "{action.path}": {e.message}') from e

    async def _resolve_element(self, page: Any, action: Action, selector: str, timeout_ms: int) -> Any:
        """Return the first element matching selector, honouring any precondition."""
        try:
            element = await page.query_selector(selector)
        except PlaywrightError as e:
            raise ActionError(action, f'invalid selector "{selector}"') from e
        if element is None:
            raise ActionError(action, f'no element matching selector "{selector}"')

        precondition = getattr(action, "precondition", None)
        if precondition:
            await self._await_precondition(action, element, selector, precondition, timeout_ms)
        return element

    async def _await_precondition(
        self,
        action: Action,
        element: Any,
        selector: str,
        precondition: str,
        timeout_ms: int,
    ) -> None:
        check = element.is_visible if precondition == "visible" else element.is_enabled
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        while True:
            if await check():
                return
            if loop.time() >= deadline:
                raise ActionError(
                    action,
                    f'element matching selector "{selector}" did not become {precondition} within {timeout_ms}ms',
                )
            await asyncio.sleep(POLL_INTERVAL_MS / 1000.0)

    async def _evaluate_on(self, action: Action, element: Any, script: str, arg: Any) -> None:
        try:
            await element.evaluate(script, arg)
        except PlaywrightError as e:
            selector = getattr(action, "selector", "")
            raise ActionError(action, f'element matching selector "{selector}" rejected the action: {e.message}') from e

    def _debug(self, msg: str, *args: Any) -> None:
        emit(self.log, "debug", msg, *args)

    def _info(self, msg: str, *args: Any) -> None:
        emit(self.log, "info", msg, *args)

"""Shared models for audit runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Viewport:
    width: int = 1280
    height: int = 1024

    def as_dict(self) -> Dict[str, int]:
        return {"width": int(self.width), "height": int(self.height)}


class Action:
    """Base for one scripted page interaction."""

    kind: ClassVar[str] = ""


@dataclass(frozen=True)
class ClickElement(Action):
    kind: ClassVar[str] = "click-element"

    selector: str
    precondition: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class SetFieldValue(Action):
    kind: ClassVar[str] = "set-field-value"

    selector: str
    value: str
    precondition: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class ClearFieldValue(Action):
    kind: ClassVar[str] = "clear-field-value"

    selector: str
    precondition: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class CheckField(Action):
    kind: ClassVar[str] = "check-field"

    selector: str
    checked: bool = True
    precondition: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class SelectOption(Action):
    kind: ClassVar[str] = "select-option"

    selector: str
    value: str
    precondition: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class WaitForElementState(Action):
    kind: ClassVar[str] = "wait-for-element-state"

    selector: str
    state: str
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class WaitForUrl(Action):
    kind: ClassVar[str] = "wait-for-url"

    subject: str
    value: str
    negated: bool = False
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class WaitForElementEvent(Action):
    kind: ClassVar[str] = "wait-for-element-event"

    selector: str
    event: str
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class WaitForDuration(Action):
    kind: ClassVar[str] = "wait-for-duration"

    duration_ms: int
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class NavigateTo(Action):
    kind: ClassVar[str] = "navigate-url"

    url: str
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class ScreenCapture(Action):
    kind: ClassVar[str] = "screen-capture"

    path: str
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class Issue:
    """One accessibility finding reported by an evaluator."""

    code: str
    type: str
    message: str
    selector: str = ""
    context: Optional[str] = None
    type_code: int = 0
    runner: Optional[str] = None
    runner_extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Issue":
        p = payload if isinstance(payload, dict) else {}
        extras = p.get("runnerExtras")
        try:
            type_code = int(p.get("typeCode") or 0)
        except (TypeError, ValueError):
            type_code = 0
        return cls(
            code=str(p.get("code") or ""),
            type=str(p.get("type") or "").lower(),
            message=str(p.get("message") or ""),
            selector=str(p.get("selector") or ""),
            context=p.get("context"),
            type_code=type_code,
            runner=p.get("runner"),
            runner_extras=dict(extras) if isinstance(extras, dict) else {},
        )


@dataclass(frozen=True)
class Result:
    """Outcome of one audit run."""

    document_title: str
    page_url: Optional[str] = None
    issues: Tuple[Issue, ...] = ()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Result":
        p = payload if isinstance(payload, dict) else {}
        raw_issues = p.get("issues")
        issues = tuple(
            Issue.from_payload(item)
            for item in (raw_issues if isinstance(raw_issues, list) else [])
        )
        return cls(
            document_title=str(p.get("documentTitle") or ""),
            page_url=p.get("pageUrl"),
            issues=issues,
        )

    @property
    def errors(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.type == "error"]

    @property
    def warnings(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.type == "warning"]

    @property
    def notices(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.type == "notice"]


class Subscription:
    """Page event listener that can be removed exactly once."""

    def __init__(self, page: Any, event: str, handler: Callable[..., Any]):
        self.page = page
        self.event = event
        self.handler = handler
        self.active = False

    async def register(self) -> "Subscription":
        self.page.on(self.event, self.handler)
        self.active = True
        return self

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.page.remove_listener(self.event, self.handler)


class RouteSubscription(Subscription):
    """Request-routing handler installed with ``page.route``."""

    async def register(self) -> "RouteSubscription":
        await self.page.route(self.event, self.handler)
        self.active = True
        return self

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        await self.page.unroute(self.event, self.handler)


@dataclass
class Session:
    """Mutable runtime state owned by exactly one audit run."""

    playwright: Any = None
    browser: Any = None
    page: Any = None
    owns_engine: bool = False
    owns_page: bool = False
    subscriptions: List[Subscription] = field(default_factory=list)
    restore_viewport: Optional[Dict[str, int]] = None
    closed: bool = False

    async def subscribe(self, subscription: Subscription) -> Subscription:
        await subscription.register()
        self.subscriptions.append(subscription)
        return subscription

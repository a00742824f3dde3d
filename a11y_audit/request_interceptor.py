"""First-request method/header/body override."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .logs import emit
from .models import RouteSubscription, Session

ROUTE_PATTERN = "**/*"


def needs_interception(method: Optional[str], headers: Optional[Mapping[str, str]], post_data: Optional[str]) -> bool:
    """True when the run changes the outgoing navigation request."""
    if headers and len(headers) > 0:
        return True
    if method and str(method).strip().lower() != "get":
        return True
    return bool(post_data)


class FirstRequestInterceptor:
    """Rewrite the first routed request, then let every later request through."""

    def __init__(
        self,
        *,
        method: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        post_data: Optional[str] = None,
        log: Any = None,
    ):
        self.method = str(method or "GET").upper()
        self.headers = {str(k).lower(): str(v) for k, v in dict(headers or {}).items()}
        self.post_data = post_data
        self.log = log
        self.handled = False

    async def install(self, session: Session) -> Optional[RouteSubscription]:
        if not needs_interception(self.method, self.headers, self.post_data):
            return None
        subscription = RouteSubscription(session.page, ROUTE_PATTERN, self._on_route)
        await session.subscribe(subscription)
        return subscription

    async def _on_route(self, route: Any) -> None:
        if self.handled:
            await route.continue_()
            return
        self.handled = True

        overrides: Dict[str, Any] = {}
        self._debug("Setting request method")
        overrides["method"] = self.method

        self._debug("Setting request headers")
        merged = {str(k).lower(): v for k, v in (await route.request.all_headers()).items()}
        merged.update(self.headers)
        overrides["headers"] = merged

        if self.post_data:
            self._debug("Setting request POST data")
            overrides["post_data"] = self.post_data

        await route.continue_(**overrides)

    def _debug(self, msg: str) -> None:
        emit(self.log, "debug", msg)

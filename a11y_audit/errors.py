"""Error taxonomy for audit runs."""

from __future__ import annotations

from typing import Any, Optional


class AuditError(Exception):
    """Base class for every terminal audit-run failure."""


class ConfigurationError(AuditError):
    """Run configuration is invalid; raised before any page is touched."""


class NavigationError(AuditError):
    """Target page could not be loaded or never reached network settlement."""

    def __init__(self, message: str, *, url: Optional[str] = None, timeout_ms: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.timeout_ms = timeout_ms


class ActionError(AuditError):
    """A scripted page action could not be completed."""

    def __init__(self, action: Any, condition: str):
        self.action = action
        self.condition = condition
        kind = getattr(action, "kind", None) or str(action)
        super().__init__(f"Failed action: {kind}: {condition}")


class InjectionError(AuditError):
    """An evaluation payload is incompatible, unknown or unreachable."""

    def __init__(self, message: str, *, evaluator: Optional[str] = None):
        super().__init__(message)
        self.evaluator = evaluator


class EvaluationError(AuditError):
    """The in-page evaluation signalled a failure."""


class AuditTimeoutError(AuditError, TimeoutError):
    """The whole run exceeded its deadline."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Audit timed out ({timeout_ms}ms)")
        self.timeout_ms = timeout_ms

"""Accessibility audit runtime driven by Playwright."""

from ._version import __version__
from .automation import AccessibilityAutomation, guard_deadline, run_audit
from .config import ALLOWED_STANDARDS, RunConfig, sanitize_url, validate_config
from .errors import (
    ActionError,
    AuditError,
    AuditTimeoutError,
    ConfigurationError,
    EvaluationError,
    InjectionError,
    NavigationError,
)
from .models import Issue, Result, Session, Viewport
from .page_actions import ActionInterpreter, is_valid_action, parse_action
from .payloads import EvaluatorDescriptor, EvaluatorRegistry, PayloadCache, ScriptInjector
from .session import BrowserSessionManager

__all__ = [
    "ALLOWED_STANDARDS",
    "AccessibilityAutomation",
    "ActionError",
    "ActionInterpreter",
    "AuditError",
    "AuditTimeoutError",
    "BrowserSessionManager",
    "ConfigurationError",
    "EvaluationError",
    "EvaluatorDescriptor",
    "EvaluatorRegistry",
    "InjectionError",
    "Issue",
    "NavigationError",
    "PayloadCache",
    "Result",
    "RunConfig",
    "ScriptInjector",
    "Session",
    "Viewport",
    "__version__",
    "guard_deadline",
    "is_valid_action",
    "parse_action",
    "run_audit",
    "sanitize_url",
    "validate_config",
]

"""Run configuration, defaults and validation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from ._version import __version__
from .errors import ConfigurationError
from .logs import logger
from .models import Action, Viewport
from .page_actions import parse_action
from .payloads import EvaluatorRegistry, registry

ALLOWED_STANDARDS: Tuple[str, ...] = (
    "Section508",
    "WCAG2A",
    "WCAG2AA",
    "WCAG2AAA",
)

DEFAULT_LAUNCH_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-dev-shm-usage",
)

# camelCase option names accepted by RunConfig.from_dict.
_ALIASES: Dict[str, str] = {
    "rootElement": "root_element",
    "hideElements": "hide_elements",
    "ignoreUrl": "ignore_url",
    "postData": "post_data",
    "screenCapture": "screen_capture",
    "userAgent": "user_agent",
    "includeNotices": "include_notices",
    "includeWarnings": "include_warnings",
    "timeout": "timeout_ms",
    "wait": "wait_ms",
    "launchArgs": "launch_args",
    "ignoreHTTPSErrors": "ignore_https_errors",
}


@dataclass(frozen=True)
class RunConfig:
    """Immutable run-level configuration."""

    standard: str = "WCAG2AA"
    ignore: Tuple[str, ...] = ()
    include_notices: bool = False
    include_warnings: bool = False
    viewport: Viewport = field(default_factory=Viewport)
    user_agent: Optional[str] = f"a11y-audit/{__version__}"
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    post_data: Optional[str] = None
    ignore_url: bool = False
    root_element: Optional[str] = None
    hide_elements: Optional[str] = None
    actions: Tuple[Action, ...] = ()
    runners: Tuple[str, ...] = ("htmlcs",)
    rules: Tuple[str, ...] = ()
    wait_ms: int = 0
    timeout_ms: int = 30000
    screen_capture: Optional[str] = None
    headless: bool = True
    launch_args: Tuple[str, ...] = DEFAULT_LAUNCH_ARGS
    ignore_https_errors: bool = True
    browser: Any = None
    page: Any = None
    log: Any = logger

    @property
    def ignore_list(self) -> Tuple[str, ...]:
        """Lower-cased ignore entries plus any excluded issue types."""
        ignored = [str(code).lower() for code in self.ignore]
        if not self.include_notices:
            ignored.append("notice")
        if not self.include_warnings:
            ignored.append("warning")
        return tuple(ignored)

    def evaluation_options(self) -> Dict[str, Any]:
        return {
            "standard": self.standard,
            "ignoreList": list(self.ignore_list),
            "rootSelector": self.root_element,
            "hideSelector": self.hide_elements,
            "ruleOverrides": list(self.rules),
            "evaluatorNames": list(self.runners),
            "waitMs": int(self.wait_ms),
            "version": __version__,
        }

    def with_options(self, **overrides: Any) -> "RunConfig":
        return RunConfig.from_dict(overrides, base=self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None, *, base: Optional["RunConfig"] = None) -> "RunConfig":
        """Build a config from loosely typed options.

        Raises ConfigurationError for unknown keys or values that cannot be
        coerced.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for raw_key, value in dict(data or {}).items():
            key = _ALIASES.get(raw_key, raw_key)
            if key not in known:
                raise ConfigurationError(f'Unknown option "{raw_key}"')
            values[key] = value
        try:
            coerced = _coerce(values)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e)) from e
        return replace(base or cls(), **coerced)


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(values)
    if "viewport" in out and not isinstance(out["viewport"], Viewport):
        vp = out["viewport"] if isinstance(out["viewport"], Mapping) else {}
        out["viewport"] = Viewport(
            width=int(vp.get("width", Viewport.width)),
            height=int(vp.get("height", Viewport.height)),
        )
    for key in ("ignore", "runners", "rules", "launch_args"):
        if key in out:
            value = out[key]
            if isinstance(value, str):
                value = [part for part in re.split(r"[;,]", value) if part.strip()]
            out[key] = tuple(str(part).strip() for part in (value or ()))
    if "actions" in out:
        out["actions"] = tuple(parse_action(action) for action in (out["actions"] or ()))
    if "headers" in out:
        out["headers"] = {str(k): str(v) for k, v in dict(out["headers"] or {}).items()}
    for key in ("wait_ms", "timeout_ms"):
        if key in out:
            out[key] = int(out[key])
    for key in ("include_notices", "include_warnings", "ignore_url", "headless", "ignore_https_errors"):
        if key in out:
            out[key] = bool(out[key])
    if "method" in out:
        out["method"] = str(out["method"] or "GET").upper()
    return out


def validate_config(config: RunConfig, evaluators: Optional[EvaluatorRegistry] = None) -> None:
    """Fail fast on invalid option combinations before any page work."""
    if config.standard not in ALLOWED_STANDARDS:
        raise ConfigurationError(f"Standard must be one of {', '.join(ALLOWED_STANDARDS)}")
    if config.page is not None and config.browser is None:
        raise ConfigurationError("The page option must only be set alongside the browser option")
    if config.ignore_url and config.page is None:
        raise ConfigurationError("The ignore_url option must only be set alongside the page option")
    if int(config.timeout_ms) <= 0:
        raise ConfigurationError("Timeout must be a positive number of milliseconds")
    if int(config.wait_ms) < 0:
        raise ConfigurationError("Wait must not be negative")
    if config.viewport.width <= 0 or config.viewport.height <= 0:
        raise ConfigurationError("Viewport width and height must be positive")
    if not config.runners:
        raise ConfigurationError("At least one runner is required")
    known = evaluators if evaluators is not None else registry
    for name in config.runners:
        if name not in known:
            raise ConfigurationError(f'Unknown runner "{name}" (available: {", ".join(known.names())})')
    for action in config.actions:
        if not isinstance(action, Action):
            raise ConfigurationError(f"Invalid action: {action!r}")


def sanitize_url(url: str) -> str:
    """Make sure a URL carries a scheme; bare paths become file URLs."""
    target = str(url or "").strip()
    if not target:
        raise ConfigurationError("URL is required")
    if target.startswith("/"):
        return f"file://{target}"
    if target.startswith("."):
        return f"file://{os.path.abspath(target)}"
    if not re.match(r"^(https?|file)://", target, re.I):
        return f"http://{target}"
    return target

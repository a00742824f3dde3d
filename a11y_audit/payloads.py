"""Evaluation payloads: registry, process-wide cache and page injection."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import Version
from playwright.async_api import Error as PlaywrightError

from ._version import __version__
from .errors import InjectionError
from .logs import emit

RUNTIME_DIR = Path(__file__).resolve().parent / "runtime"
RUNTIME_SCRIPT = RUNTIME_DIR / "runner.js"
ENTRY_POINT_GROUP = "a11y_audit.evaluators"
FETCH_TIMEOUT_S = 30.0

AXE_CDN_URL = "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.8.3/axe.min.js"
HTMLCS_CDN_URL = "https://squizlabs.github.io/HTML_CodeSniffer/build/HTMLCS.js"


@dataclass(frozen=True)
class EvaluatorDescriptor:
    """A named rule evaluator and the tool versions it supports.

    ``scripts`` are local file paths or http(s) URLs bundled ahead of
    ``run_source``, the in-page function registered under ``name``.
    """

    name: str
    supports: str
    scripts: Tuple[str, ...] = ()
    run_source: str = ""

    def is_compatible(self, version: str = __version__) -> bool:
        if not self.supports:
            return False
        try:
            return Version(version) in SpecifierSet(self.supports)
        except InvalidSpecifier:
            return False

    def assert_compatible(self, version: str = __version__) -> None:
        if not self.is_compatible(version):
            raise InjectionError(
                "\n".join(
                    [
                        f'The installed "{self.name}" evaluator does not support a11y-audit {version}',
                        "Please update your version of a11y-audit or the evaluator",
                        f"Evaluator support: {self.supports or '(none)'}",
                        f"a11y-audit version: {version}",
                    ]
                ),
                evaluator=self.name,
            )


def _adapter_source(name: str) -> str:
    return (RUNTIME_DIR / f"{name}.js").read_text(encoding="utf-8")


def builtin_evaluators() -> List[EvaluatorDescriptor]:
    return [
        EvaluatorDescriptor(
            name="htmlcs",
            supports=">=1.0,<2",
            scripts=(HTMLCS_CDN_URL,),
            run_source=_adapter_source("htmlcs"),
        ),
        EvaluatorDescriptor(
            name="axe",
            supports=">=1.0,<2",
            scripts=(AXE_CDN_URL,),
            run_source=_adapter_source("axe"),
        ),
    ]


class EvaluatorRegistry:
    """Name -> evaluator descriptor mapping with fail-fast lookups."""

    def __init__(self, entry_point_group: Optional[str] = ENTRY_POINT_GROUP):
        self.entry_point_group = entry_point_group
        self._lock = threading.Lock()
        self._descriptors: Dict[str, EvaluatorDescriptor] = {}
        self._discovered = False

    def register(self, descriptor: EvaluatorDescriptor) -> EvaluatorDescriptor:
        name = str(descriptor.name or "").strip()
        if not name:
            raise ValueError("Evaluator name is required")
        with self._lock:
            self._descriptors[name] = descriptor
        return descriptor

    def names(self) -> List[str]:
        self._discover()
        with self._lock:
            return sorted(self._descriptors)

    def __contains__(self, name: object) -> bool:
        self._discover()
        with self._lock:
            return name in self._descriptors

    def get(self, name: str) -> EvaluatorDescriptor:
        self._discover()
        with self._lock:
            descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise InjectionError(
                f'Unknown evaluator "{name}" (available: {", ".join(self.names())})',
                evaluator=name,
            )
        return descriptor

    def _discover(self) -> None:
        """Load externally supplied evaluators from installed entry points, once."""
        with self._lock:
            if self._discovered:
                return
            self._discovered = True
        if not self.entry_point_group:
            return
        for ep in metadata.entry_points(group=self.entry_point_group):
            loaded = ep.load()
            descriptor = loaded() if callable(loaded) else loaded
            if not isinstance(descriptor, EvaluatorDescriptor):
                raise InjectionError(
                    f'Entry point "{ep.name}" did not provide an evaluator descriptor',
                    evaluator=ep.name,
                )
            with self._lock:
                self._descriptors.setdefault(descriptor.name, descriptor)


def _default_registry() -> EvaluatorRegistry:
    registry = EvaluatorRegistry()
    for descriptor in builtin_evaluators():
        registry.register(descriptor)
    return registry


registry = _default_registry()


def read_script(source: str) -> str:
    """Read a script from disk or fetch it over http(s)."""
    if source.startswith(("http://", "https://")):
        response = httpx.get(source, timeout=FETCH_TIMEOUT_S, follow_redirects=True)
        response.raise_for_status()
        return response.text
    return Path(source).expanduser().read_text(encoding="utf-8")


class PayloadCache:
    """Process-wide, init-once cache of compiled payload sources.

    Entries live from first successful load until process exit. Loads for the
    same key are serialized; a failed load is not cached.
    """

    def __init__(self, reader: Callable[[str], str] = read_script):
        self.reader = reader
        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._sources: Dict[str, str] = {}

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._sources

    def clear(self) -> None:
        with self._lock:
            self._sources.clear()
            self._key_locks.clear()

    async def runtime(self) -> str:
        return await asyncio.to_thread(self._load, "__runtime__", self._build_runtime)

    async def evaluator(self, descriptor: EvaluatorDescriptor) -> str:
        return await asyncio.to_thread(
            self._load, descriptor.name, lambda: self._build_evaluator(descriptor)
        )

    def _load(self, key: str, build: Callable[[], str]) -> str:
        with self._lock:
            cached = self._sources.get(key)
            if cached is not None:
                return cached
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            with self._lock:
                cached = self._sources.get(key)
            if cached is not None:
                return cached
            source = build()
            with self._lock:
                return self._sources.setdefault(key, source)

    def _build_runtime(self) -> str:
        return RUNTIME_SCRIPT.read_text(encoding="utf-8")

    def _build_evaluator(self, descriptor: EvaluatorDescriptor) -> str:
        bundle: List[str] = []
        for script in descriptor.scripts:
            try:
                bundle.append(self.reader(script))
            except (OSError, httpx.HTTPError) as e:
                raise InjectionError(
                    f'Could not load script "{script}" for evaluator "{descriptor.name}": {e}',
                    evaluator=descriptor.name,
                ) from e
        joined = "\n\n".join(bundle)
        return (
            f";{joined};\n"
            f";window.__a11yAudit.runners[{descriptor.name!r}] = {descriptor.run_source.strip()};\n"
            # Playwright invokes a string whose completion value is a function.
            "void 0;\n"
        )


payload_cache = PayloadCache()


class ScriptInjector:
    """Evaluate the runtime and the requested evaluators into a page."""

    def __init__(
        self,
        *,
        evaluators: Optional[EvaluatorRegistry] = None,
        cache: Optional[PayloadCache] = None,
        version: str = __version__,
        log: Any = None,
    ):
        self.evaluators = evaluators if evaluators is not None else registry
        self.cache = cache if cache is not None else payload_cache
        self.version = version
        self.log = log

    def resolve(self, names: Iterable[str]) -> List[EvaluatorDescriptor]:
        descriptors = [self.evaluators.get(name) for name in names]
        for descriptor in descriptors:
            descriptor.assert_compatible(self.version)
        return descriptors

    async def inject(self, page: Any, names: Iterable[str]) -> None:
        # Compatibility and loading finish before the page is touched.
        descriptors = self.resolve(list(names))
        runtime_source = await self.cache.runtime()
        sources: List[Tuple[str, str]] = []
        for descriptor in descriptors:
            self._debug("Loading evaluator: %s", descriptor.name)
            sources.append((descriptor.name, await self.cache.evaluator(descriptor)))

        self._debug("Injecting runtime")
        await self._evaluate(page, "runtime", runtime_source)
        for name, source in sources:
            self._debug("Injecting evaluator: %s", name)
            await self._evaluate(page, name, source)

    async def _evaluate(self, page: Any, name: str, source: str) -> None:
        try:
            await page.evaluate(source)
        except PlaywrightError as e:
            raise InjectionError(f'Could not inject "{name}" into the page: {e.message}', evaluator=name) from e

    def _debug(self, msg: str, *args: Any) -> None:
        emit(self.log, "debug", msg, *args)

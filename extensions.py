"""Extension surface: extra statement forms, lifecycle hooks and step rules.

An extension is a Python file exposing ``englang_register(ext)``; it may also
set ``ENGLANG_EXTENSION_NAME`` and ``ENGLANG_EXTENSION_API_VERSION``.
"""

from __future__ import annotations

import importlib.util
import itertools
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence


EXTENSION_API_VERSION = 1

EVENTS = (
    "program_start",
    "before_statement",
    "after_statement",
    "after_call",
    "on_error",
    "program_end",
)


class EngExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# handler(interpreter, tokens, index) -> next line index, or None for index + 1
StatementHandler = Callable[[Any, List[Any], int], Optional[int]]


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None


@dataclass(frozen=True)
class Hook:
    event: str
    handler: Callable[..., None]
    owner: str
    priority: int = 0


@dataclass(frozen=True)
class StepRule:
    name: str
    every_n: int
    handler: Callable[[Any, StepContext], None]
    owner: str

    def due(self, step_index: int) -> bool:
        return step_index % self.every_n == 0


@dataclass(frozen=True)
class ExtensionStatement:
    pattern: str
    handler: StatementHandler
    owner: str
    doc: str = ""


@dataclass
class HookRegistry:
    hooks: Dict[str, List[Hook]] = field(default_factory=dict)
    step_rules: List[StepRule] = field(default_factory=list)

    def add_hook(self, hook: Hook) -> None:
        if hook.event not in EVENTS:
            raise EngExtensionError(f"Unknown event '{hook.event}' (expected one of: {', '.join(EVENTS)})")
        bucket = self.hooks.setdefault(hook.event, [])
        bucket.append(hook)
        # Stable sort: equal priorities keep registration order.
        bucket.sort(key=lambda h: -h.priority)

    def hooks_for(self, event: str) -> List[Hook]:
        return self.hooks.get(event, [])

    def add_step_rule(self, rule: StepRule) -> None:
        if rule.every_n < 1:
            raise EngExtensionError(f"Step rule '{rule.name}' needs every_n >= 1, got {rule.every_n}")
        self.step_rules.append(rule)

    def due_rules(self, step_index: int) -> List[StepRule]:
        return [rule for rule in self.step_rules if rule.due(step_index)]


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    statements: List[ExtensionStatement] = field(default_factory=list)


class ExtensionAPI:
    """Handle passed to ``englang_register``; everything it adds is tagged with ``name``."""

    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self.name = ext_name

    def metadata(self, *, name: Optional[str] = None, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name or self.name, version=version, requires_api=requires_api))

    def register_statement(self, pattern: str, handler: StatementHandler, *, doc: str = "") -> None:
        words = pattern.split()
        if not words:
            raise EngExtensionError(f"{self.name}: statement pattern must be non-empty")
        if words[0] == "_":
            raise EngExtensionError(f"{self.name}: statement pattern '{pattern}' must start with a keyword")
        self._services.statements.append(ExtensionStatement(" ".join(words), handler, self.name, doc))

    def statement(self, pattern: str, *, doc: str = ""):
        def attach(fn: StatementHandler) -> StatementHandler:
            self.register_statement(pattern, fn, doc=doc)
            return fn

        return attach

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        """Register ``handler`` for ``event``; without a handler, returns a decorator."""

        def attach(fn: Callable[..., None]) -> Callable[..., None]:
            self._services.hook_registry.add_hook(Hook(event, fn, self.name, priority))
            return fn

        return attach if handler is None else attach(handler)

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        def attach(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
            self._services.hook_registry.add_step_rule(StepRule(name or fn.__name__, every_n, fn, self.name))
            return fn

        return attach if handler is None else attach(handler)


_module_ids = itertools.count(1)


def load_extension_module(path: str) -> Any:
    """Execute the extension file at ``path`` as a fresh, unregistered module."""
    if not os.path.isfile(path):
        raise EngExtensionError(f"Extension not found: {path}")
    stem = re.sub(r"\W", "_", os.path.splitext(os.path.basename(path))[0])
    module_spec = importlib.util.spec_from_file_location(f"_englang_ext_{next(_module_ids)}_{stem}", path)
    if module_spec is None or module_spec.loader is None:
        raise EngExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(module_spec)
    try:
        module_spec.loader.exec_module(module)
    except Exception as exc:
        raise EngExtensionError(f"Extension {path} failed to import: {exc}") from exc
    return module


def register_module(services: RuntimeServices, module: Any, *, default_name: str) -> None:
    api_version = getattr(module, "ENGLANG_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise EngExtensionError(
            f"Extension {default_name} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "englang_register", None)
    if not callable(register):
        raise EngExtensionError(f"Extension {default_name} must define callable englang_register(ext)")

    ext = ExtensionAPI(services=services, ext_name=str(getattr(module, "ENGLANG_EXTENSION_NAME", default_name)))
    known = len(services.metadata)
    register(ext)
    for meta in services.metadata[known:]:
        if meta.requires_api > EXTENSION_API_VERSION:
            raise EngExtensionError(
                f"Extension {meta.name} {meta.version} requires API {meta.requires_api}, host supports {EXTENSION_API_VERSION}"
            )


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in paths:
        module = load_extension_module(os.path.abspath(path))
        register_module(services, module, default_name=os.path.splitext(os.path.basename(path))[0])
    return services

"""Execute compiled bundles inside an embedded QuickJS engine.

The host registers its runtime packages once under the global registry the
shims read from, freezes it, and may then load any number of bundles into
the same context. Every bundle that imports a runtime module therefore sees
the same registered object.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from app_constants import RUNTIME_BUNDLE_GLOBAL, RUNTIME_PACKAGE_GLOBAL

try:  # pragma: no cover - optional dependency checked at runtime
    import quickjs  # type: ignore
except Exception:  # pragma: no cover - gracefully handle missing package
    quickjs = None  # type: ignore

logger = logging.getLogger(__name__)

SANDBOX_MEMORY_LIMIT = 64 * 1024 * 1024
SANDBOX_TIME_LIMIT_SECONDS = 5
_BUNDLES_GLOBAL = "__bundles__"


class SandboxError(RuntimeError):
    """A JavaScript exception raised while evaluating code in the sandbox."""


class BundleSandbox:
    def __init__(
        self,
        *,
        memory_limit: int = SANDBOX_MEMORY_LIMIT,
        time_limit: float = SANDBOX_TIME_LIMIT_SECONDS,
    ):
        if quickjs is None:
            raise RuntimeError("The quickjs package must be installed to run bundles")
        self._context = quickjs.Context()
        self._context.set_memory_limit(memory_limit)
        self._context.set_time_limit(time_limit)
        self._registered: set[str] = set()
        self._frozen = False
        self._run(
            f"globalThis.{RUNTIME_PACKAGE_GLOBAL} = globalThis.{RUNTIME_PACKAGE_GLOBAL} || {{}};"
            f"globalThis.{_BUNDLES_GLOBAL} = {{}};"
        )

    @property
    def registry_frozen(self) -> bool:
        return self._frozen

    @property
    def registered_modules(self) -> list[str]:
        return sorted(self._registered)

    def _run(self, code: str) -> Any:
        try:
            return self._context.eval(code)
        except quickjs.JSException as exc:
            raise SandboxError(str(exc)) from exc

    def register_runtime_module(self, name: str, js_expression: str) -> None:
        """Install ``js_expression``'s value as the runtime package ``name``."""

        if self._frozen:
            raise SandboxError("Runtime registry is frozen; register modules before loading bundles.")
        if name in self._registered:
            raise SandboxError(f"Runtime module already registered: {name}")
        self._run(f"globalThis.{RUNTIME_PACKAGE_GLOBAL}[{json.dumps(name)}] = ({js_expression});")
        self._registered.add(name)

    def freeze_registry(self) -> None:
        if self._frozen:
            return
        self._run(f"Object.freeze(globalThis.{RUNTIME_PACKAGE_GLOBAL});")
        self._frozen = True
        logger.debug("Runtime registry frozen with %s", ", ".join(self.registered_modules) or "no modules")

    def load_bundle(self, bundle: str, name: str) -> None:
        """Evaluate ``bundle`` and keep its exports as ``__bundles__[name]``.

        The registry is frozen on first load if the host has not done so.
        """

        self.freeze_registry()
        self._run(
            "(function () {\n"
            f"{bundle}\n"
            f"globalThis.{_BUNDLES_GLOBAL}[{json.dumps(name)}] = {RUNTIME_BUNDLE_GLOBAL};\n"
            "})();"
        )

    def eval(self, code: str) -> Any:
        return self._run(code)

    def eval_json(self, expression: str) -> Any:
        """Evaluate ``expression`` and return its JSON value as Python data."""

        raw = self._run(f"JSON.stringify({expression})")
        return None if raw is None else json.loads(raw)


__all__ = [
    "BundleSandbox",
    "SANDBOX_MEMORY_LIMIT",
    "SANDBOX_TIME_LIMIT_SECONDS",
    "SandboxError",
]

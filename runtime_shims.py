"""Runtime shim modules that forward imports to the host's runtime registry.

Caller-authored code imports ``react`` and ``remotion`` by their ordinary
names, but must share the exact objects the host already initialized (hook
and context state live in module singletons). Each shim therefore exports
lazy getters over ``globalThis.__REMOTION_RUNTIME_PACKAGES__[<name>]``
instead of bundling a second copy of the package.
"""
from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Mapping

from dotenv import load_dotenv

from app_constants import RUNTIME_PACKAGE_GLOBAL

load_dotenv()

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

NODE_BIN = (os.getenv("NODE_BIN") or "").strip() or "node"


def _read_flag(name: str, default: str) -> bool:
    return (os.getenv(name) or default).strip().lower() in {"1", "true", "yes"}


RUNTIME_EXPORT_DISCOVERY = _read_flag("RUNTIME_EXPORT_DISCOVERY", "true")
PACKAGE_RESOLVE_DIR = (os.getenv("PACKAGE_RESOLVE_DIR") or "").strip() or os.getcwd()


class RuntimeModule(str, Enum):
    """Host-provided packages intercepted by the shim layer."""

    REACT = "react"
    JSX_RUNTIME = "react/jsx-runtime"
    JSX_DEV_RUNTIME = "react/jsx-dev-runtime"
    REMOTION = "remotion"

    @classmethod
    def is_runtime_name(cls, specifier: str) -> bool:
        return specifier in _RUNTIME_NAMES


_RUNTIME_NAMES = frozenset(member.value for member in RuntimeModule)

RUNTIME_EXPORTS: Mapping[RuntimeModule, tuple[str, ...]] = {
    RuntimeModule.REACT: (
        "Children",
        "Component",
        "Fragment",
        "Profiler",
        "PureComponent",
        "StrictMode",
        "Suspense",
        "act",
        "cache",
        "cloneElement",
        "createContext",
        "createElement",
        "createRef",
        "forwardRef",
        "isValidElement",
        "lazy",
        "memo",
        "startTransition",
        "use",
        "useActionState",
        "useCallback",
        "useContext",
        "useDebugValue",
        "useDeferredValue",
        "useEffect",
        "useId",
        "useImperativeHandle",
        "useInsertionEffect",
        "useLayoutEffect",
        "useMemo",
        "useOptimistic",
        "useReducer",
        "useRef",
        "useState",
        "useSyncExternalStore",
        "useTransition",
        "version",
    ),
    RuntimeModule.JSX_RUNTIME: ("Fragment", "jsx", "jsxs"),
    RuntimeModule.JSX_DEV_RUNTIME: ("Fragment", "jsxDEV"),
    RuntimeModule.REMOTION: (
        "AbsoluteFill",
        "Artifact",
        "Audio",
        "Composition",
        "Easing",
        "Experimental",
        "Folder",
        "Freeze",
        "IFrame",
        "Img",
        "Internals",
        "Loop",
        "OffthreadVideo",
        "Sequence",
        "Series",
        "Still",
        "VERSION",
        "Video",
        "cancelRender",
        "continueRender",
        "delayRender",
        "getInputProps",
        "getRemotionEnvironment",
        "getStaticFiles",
        "interpolate",
        "interpolateColors",
        "measureSpring",
        "prefetch",
        "random",
        "registerRoot",
        "spring",
        "staticFile",
        "useBufferState",
        "useCurrentFrame",
        "useCurrentScale",
        "useVideoConfig",
        "watchStaticFile",
    ),
}

_DISCOVERY_SCRIPT = """
const result = {};
for (const name of JSON.parse(process.argv[1])) {
  try {
    result[name] = Object.keys(await import(name));
  } catch (error) {
    result[name] = null;
  }
}
console.log(JSON.stringify(result));
"""


def validate_export_names(names: Iterable[str]) -> tuple[str, ...]:
    """Keep names usable as named exports: no ``default``, valid identifiers, sorted."""

    return tuple(sorted({name for name in names if name != "default" and IDENTIFIER_PATTERN.match(name)}))


def discover_runtime_exports(
    *,
    node_bin: str | None = None,
    resolve_dir: str | None = None,
    timeout: float = 30.0,
) -> dict[RuntimeModule, tuple[str, ...]]:
    """Ask Node for the real export surface of every runtime module.

    Returns an empty mapping when Node is unavailable or the discovery run fails;
    modules that could not be imported are omitted.
    """

    names = [member.value for member in RuntimeModule]
    try:
        completed = subprocess.run(
            [node_bin or NODE_BIN, "--input-type=module", "-e", _DISCOVERY_SCRIPT, json.dumps(names)],
            cwd=resolve_dir or PACKAGE_RESOLVE_DIR,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
        payload = json.loads(completed.stdout.strip().splitlines()[-1])
    except (OSError, subprocess.SubprocessError, ValueError, IndexError) as exc:
        logger.warning("Runtime export discovery failed, using the static export table: %s", exc)
        return {}

    discovered: dict[RuntimeModule, tuple[str, ...]] = {}
    for member in RuntimeModule:
        exports = payload.get(member.value) if isinstance(payload, dict) else None
        if isinstance(exports, list):
            discovered[member] = validate_export_names(str(name) for name in exports)
        else:
            logger.warning("Runtime module %s could not be imported during discovery", member.value)
    return discovered


def resolve_export_table(
    discovered: Mapping[RuntimeModule, Iterable[str]] | None = None,
) -> dict[RuntimeModule, tuple[str, ...]]:
    """Export names per runtime module; discovered names win over the static table."""

    table: dict[RuntimeModule, tuple[str, ...]] = {}
    for member in RuntimeModule:
        static_names = validate_export_names(RUNTIME_EXPORTS[member])
        if discovered and member in discovered:
            names = validate_export_names(discovered[member])
            missing = sorted(set(static_names) - set(names))
            if missing:
                logger.warning(
                    "%s does not export %s listed in the static export table",
                    member.value,
                    ", ".join(missing),
                )
            extra = sorted(set(names) - set(static_names))
            if extra:
                logger.warning(
                    "%s exports %d names missing from the static export table: %s",
                    member.value,
                    len(extra),
                    ", ".join(extra),
                )
            table[member] = names
        else:
            table[member] = static_names
    return table


def create_runtime_shim(module_name: str, export_names: Iterable[str]) -> str:
    """Return CommonJS source forwarding ``default`` and ``export_names`` to the registry."""

    exported = ["default", *validate_export_names(export_names)]
    missing_message = json.dumps(f"Missing runtime module: {module_name}")
    return "\n".join(
        [
            f"var modules = globalThis.{RUNTIME_PACKAGE_GLOBAL};",
            f"var runtime = modules ? modules[{json.dumps(module_name)}] : undefined;",
            f"if (!runtime) throw new Error({missing_message});",
            'Object.defineProperty(exports, "__esModule", { value: true });',
            f"{json.dumps(exported)}.forEach(function (name) {{",
            "  Object.defineProperty(exports, name, {",
            "    enumerable: true,",
            "    get: function () { return runtime[name]; }",
            "  });",
            "});",
            "",
        ]
    )


def shim_sources_for(table: Mapping[RuntimeModule, Iterable[str]]) -> dict[str, str]:
    return {member.value: create_runtime_shim(member.value, names) for member, names in table.items()}


def build_shim_sources(
    discovered: Mapping[RuntimeModule, Iterable[str]] | None = None,
) -> dict[str, str]:
    return shim_sources_for(resolve_export_table(discovered))


@lru_cache(maxsize=1)
def get_runtime_export_table() -> Mapping[RuntimeModule, tuple[str, ...]]:
    """Export table for this process: Node discovery when enabled, else the static table."""

    discovered = discover_runtime_exports() if RUNTIME_EXPORT_DISCOVERY else None
    return MappingProxyType(resolve_export_table(discovered))


@lru_cache(maxsize=1)
def get_shim_sources() -> Mapping[str, str]:
    """Shim sources for this process, generated once."""

    return MappingProxyType(shim_sources_for(get_runtime_export_table()))


__all__ = [
    "IDENTIFIER_PATTERN",
    "RUNTIME_EXPORTS",
    "RuntimeModule",
    "build_shim_sources",
    "create_runtime_shim",
    "discover_runtime_exports",
    "get_runtime_export_table",
    "get_shim_sources",
    "resolve_export_table",
    "shim_sources_for",
    "validate_export_names",
]

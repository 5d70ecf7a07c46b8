"""Compile an in-memory project into one self-invoking JavaScript bundle.

The bundler (esbuild) is treated as an external build step: every virtual
file is transformed to CommonJS on its own, the import records esbuild reports
for it are resolved here against the file map, runtime shims, or installed
packages, and the modules are linked into a single IIFE that assigns the entry
module's exports to ``__REMOTION_BUNDLE__``. Installed packages of one compile
share a single esbuild bundle.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol
from urllib.parse import quote

from app_constants import RUNTIME_BUNDLE_GLOBAL
from import_resolver import ImportKind, resolve_import
from project_errors import CompileError, EmptyOutputError, ResolutionError
from runtime_shims import RuntimeModule, get_runtime_export_table, get_shim_sources, shim_sources_for
from services.esbuild_service import (
    BundlerError,
    Diagnostic,
    EsbuildTransformer,
    ModuleBuild,
    PackageBundle,
    format_diagnostics,
)
from virtual_files import FileCategory, VirtualFileStore, extension_of, loader_for, normalize_virtual_path

logger = logging.getLogger(__name__)

ENTRY_MODULE_ID = "<entry>"
PACKAGES_MODULE_ID = "<packages>"
_RUNTIME_PREFIX = "runtime:"
_PACKAGE_PREFIX = "package:"

_COMMENT_LINE_RE = re.compile(r"^\s*//.*$", re.MULTILINE)

_DATA_URL_MIME_TYPES = {
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
}

_COMPILE_HINTS = (
    (
        lambda message: "No matching export" in message and "TransitionSeries" in message,
        "Hint: import TransitionSeries from @remotion/transitions, not from remotion.",
    ),
    (
        lambda message: "No matching export" in message and "fade" in message,
        "Hint: import fade from @remotion/transitions/fade.",
    ),
    (
        lambda message: "unterminated string literal" in message.lower(),
        "Hint: check for missing quote characters in JSX style/object literals.",
    ),
)


class Transformer(Protocol):
    async def transform(self, source: str, *, loader: str, sourcefile: str) -> ModuleBuild: ...

    async def bundle_packages(self, specifiers: Iterable[str], *, externals: Iterable[str]) -> PackageBundle: ...


@dataclass(slots=True)
class LinkedModule:
    module_id: str
    code: str
    dependencies: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ModuleGraph:
    """Linked modules of one compile, plus the builds the export check reads."""

    modules: dict[str, LinkedModule] = field(default_factory=dict)
    builds: dict[str, ModuleBuild] = field(default_factory=dict)
    package_exports: dict[str, frozenset[str] | None] = field(default_factory=dict)


def add_compile_hints(message: str) -> str:
    hints = [hint for matches, hint in _COMPILE_HINTS if matches(message)]
    if not hints:
        return message
    return f"{message}\n\n" + "\n".join(hints)


def is_blank_module(code: str) -> bool:
    return not _COMMENT_LINE_RE.sub("", code).strip()


def _line_and_column(source: str, offset: int) -> tuple[int, int, str]:
    line_start = source.rfind("\n", 0, offset) + 1
    line_end = source.find("\n", offset)
    if line_end == -1:
        line_end = len(source)
    return source.count("\n", 0, offset) + 1, offset - line_start, source[line_start:line_end]


def locate_import(source: str, specifier: str, name: str) -> tuple[int, int, str]:
    """Line, zero-based column and text of ``name`` in the statement importing ``specifier``."""

    quoted = re.compile(r"""(["'])""" + re.escape(specifier) + r"\1")
    word = re.compile(r"(?<![\w$])" + re.escape(name) + r"(?![\w$])")
    fallback = 0
    for match in quoted.finditer(source):
        start = max(source.rfind("import", 0, match.start()), source.rfind("export", 0, match.start()))
        if start == -1:
            continue
        if name == "default":
            return _line_and_column(source, start)
        found = word.search(source, start, match.start())
        if found:
            return _line_and_column(source, found.start())
        fallback = fallback or start
    return _line_and_column(source, fallback)


def _display_name(module_id: str) -> str:
    for prefix in (_RUNTIME_PREFIX, _PACKAGE_PREFIX):
        if module_id.startswith(prefix):
            return module_id[len(prefix):]
    return module_id


def find_missing_exports(
    graph: ModuleGraph,
    store: VirtualFileStore,
    export_table: Mapping[RuntimeModule, Iterable[str]],
) -> list[Diagnostic]:
    """Named imports whose target module does not export the name.

    Targets without a static export list (CommonJS files, JSON, CSS, assets,
    CommonJS packages) are not checked. ``export *`` re-exports are followed.
    """

    runtime_exports = {
        f"{_RUNTIME_PREFIX}{member.value}": frozenset(["default", *names]) for member, names in export_table.items()
    }
    resolved: dict[str, frozenset[str] | None] = {}

    def exports_of(module_id: str, visiting: frozenset[str]) -> frozenset[str] | None:
        if module_id in runtime_exports:
            return runtime_exports[module_id]
        if module_id.startswith(_PACKAGE_PREFIX):
            return graph.package_exports.get(module_id[len(_PACKAGE_PREFIX):])
        if module_id in resolved:
            return resolved[module_id]
        build = graph.builds.get(module_id)
        if build is None or build.exports is None:
            return None
        if module_id in visiting:
            return frozenset()

        names: set[str] | None = set(build.exports)
        dependencies = graph.modules[module_id].dependencies
        for specifier in build.star_exports:
            star_names = exports_of(dependencies[specifier], visiting | {module_id})
            if star_names is None:
                names = None
                break
            names.update(star_names - {"default"})
        result = None if names is None else frozenset(names)
        if not visiting:
            resolved[module_id] = result
        return result

    diagnostics: list[Diagnostic] = []
    for module_id, build in graph.builds.items():
        dependencies = graph.modules[module_id].dependencies
        for binding in build.bindings:
            target = dependencies.get(binding.specifier)
            if target is None:
                continue
            if target.startswith(_PACKAGE_PREFIX) and binding.name == "default":
                continue
            names = exports_of(target, frozenset())
            if names is None or binding.name in names:
                continue
            line, column, line_text = locate_import(store.read(module_id), binding.specifier, binding.name)
            diagnostics.append(
                Diagnostic(
                    text=f'No matching export in "{_display_name(target)}" for import "{binding.name}"',
                    file=module_id,
                    line=line,
                    column=column,
                    line_text=line_text,
                )
            )
    return diagnostics


def _entry_module_source(entry_file: str) -> str:
    entry = json.dumps(entry_file)
    return "\n".join(
        [
            f"var entryModule = require({entry});",
            'Object.defineProperty(exports, "__esModule", { value: true });',
            "exports.default = entryModule && entryModule.__esModule ? entryModule.default : entryModule;",
            "Object.keys(entryModule || {}).forEach(function (name) {",
            '  if (name === "default" || name === "__esModule") return;',
            "  Object.defineProperty(exports, name, {",
            "    enumerable: true,",
            "    get: function () { return entryModule[name]; }",
            "  });",
            "});",
        ]
    )


def _json_module_source(path: str, source: str) -> str:
    try:
        value = json.loads(source)
    except ValueError as exc:
        raise CompileError(f"{path}: invalid JSON: {exc}") from exc
    return f"module.exports = {json.dumps(value)};"


def _css_module_source(path: str, source: str) -> str:
    return "\n".join(
        [
            'if (typeof document !== "undefined") {',
            '  var style = document.createElement("style");',
            f'  style.setAttribute("data-file", {json.dumps(path)});',
            f"  style.textContent = {json.dumps(source)};",
            "  document.head.appendChild(style);",
            "}",
            "module.exports = {};",
        ]
    )


def to_data_url(path: str, source: str) -> str:
    if source.startswith("data:"):
        return source
    mime_type = _DATA_URL_MIME_TYPES.get(extension_of(path), "application/octet-stream")
    if mime_type == "image/svg+xml":
        return f"data:{mime_type},{quote(source, safe='')}"
    encoded = base64.b64encode(source.encode("utf-8")).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def link_bundle(modules: Mapping[str, LinkedModule], entry_id: str = ENTRY_MODULE_ID) -> str:
    """Join linked modules into one IIFE assigning ``entry_id``'s exports to the bundle global."""

    definitions = ",\n".join(
        f"  {json.dumps(module.module_id)}: [function (module, exports, require) {{\n{module.code}\n}}, "
        f"{json.dumps(module.dependencies, sort_keys=True)}]"
        for module in modules.values()
    )
    return "\n".join(
        [
            f"var {RUNTIME_BUNDLE_GLOBAL} = (function () {{",
            "var __definitions = {",
            definitions,
            "};",
            "var __cache = {};",
            "function __require(id) {",
            "  var cached = __cache[id];",
            "  if (cached) return cached.exports;",
            "  var definition = __definitions[id];",
            '  if (!definition) throw new Error("Module not found in bundle: " + id);',
            "  var module = { exports: {} };",
            "  __cache[id] = module;",
            "  definition[0].call(module.exports, module, module.exports, function (specifier) {",
            "    var target = definition[1][specifier];",
            "    if (target === undefined) {",
            '      throw new Error("Cannot find module \\"" + specifier + "\\" from \\"" + id + "\\"");',
            "    }",
            "    return __require(target);",
            "  });",
            "  return module.exports;",
            "}",
            f"return __require({json.dumps(entry_id)});",
            "})();",
            "",
        ]
    )


class ProjectCompiler:
    """Resolves, transforms and links a virtual project; one instance may serve concurrent compiles."""

    def __init__(
        self,
        transformer: Transformer | None = None,
        *,
        export_table: Mapping[RuntimeModule, Iterable[str]] | None = None,
    ):
        self.transformer = transformer or EsbuildTransformer()
        self._export_table = export_table
        self._shim_sources = shim_sources_for(export_table) if export_table is not None else None

    @property
    def export_table(self) -> Mapping[RuntimeModule, Iterable[str]]:
        return self._export_table if self._export_table is not None else get_runtime_export_table()

    @property
    def shim_sources(self) -> Mapping[str, str]:
        return self._shim_sources if self._shim_sources is not None else get_shim_sources()

    async def compile(self, files: Mapping[str, Any], entry_file: str) -> str:
        store = VirtualFileStore(files)
        entry = normalize_virtual_path(entry_file)
        if entry not in store:
            available = ", ".join(store.paths())
            raise CompileError(f'Entry file "{entry}" does not exist. Available files: {available or "none"}.')

        if self._export_table is None:
            # First call runs Node export discovery; later calls hit the cache.
            await asyncio.to_thread(get_runtime_export_table)

        try:
            graph = await self._collect_modules(store, entry)
        except BundlerError as exc:
            raise CompileError(add_compile_hints(str(exc))) from exc
        except ResolutionError as exc:
            raise ResolutionError(exc.specifier, exc.importer, add_compile_hints(str(exc))) from exc

        if is_blank_module(graph.modules[entry].code):
            raise EmptyOutputError()

        missing = find_missing_exports(graph, store, self.export_table)
        if missing:
            raise CompileError(add_compile_hints(format_diagnostics(missing)))

        bundle = link_bundle(graph.modules)
        logger.debug("Linked %d modules for entry %s", len(graph.modules), entry)
        return bundle

    async def _collect_modules(self, store: VirtualFileStore, entry: str) -> ModuleGraph:
        graph = ModuleGraph()
        graph.modules[ENTRY_MODULE_ID] = LinkedModule(ENTRY_MODULE_ID, _entry_module_source(entry), {entry: entry})
        packages: list[str] = []
        seen = {ENTRY_MODULE_ID, entry}
        frontier = [entry]
        while frontier:
            builds = await asyncio.gather(*(self._build_file(path, store) for path in frontier))
            next_frontier: list[str] = []
            for path, build in zip(frontier, builds):
                linked = LinkedModule(path, build.code)
                for specifier in build.imports:
                    target = self._resolve(specifier, path, store, entry)
                    linked.dependencies[specifier] = target
                    if target in seen:
                        continue
                    seen.add(target)
                    if target.startswith(_RUNTIME_PREFIX):
                        self._add_runtime_module(graph, target)
                    elif target.startswith(_PACKAGE_PREFIX):
                        packages.append(target[len(_PACKAGE_PREFIX):])
                    else:
                        next_frontier.append(target)
                graph.modules[path] = linked
                graph.builds[path] = build
            frontier = next_frontier

        if packages:
            await self._add_packages(graph, packages)
        return graph

    def _resolve(self, specifier: str, importer: str, store: VirtualFileStore, entry: str) -> str:
        resolved = resolve_import(specifier, importer, store, entry_file=entry)
        if resolved.kind is ImportKind.RUNTIME:
            return f"{_RUNTIME_PREFIX}{resolved.path}"
        if resolved.kind is ImportKind.PACKAGE:
            return f"{_PACKAGE_PREFIX}{resolved.path}"
        return resolved.path

    def _add_runtime_module(self, graph: ModuleGraph, module_id: str) -> None:
        if module_id not in graph.modules:
            name = module_id[len(_RUNTIME_PREFIX):]
            graph.modules[module_id] = LinkedModule(module_id, self.shim_sources[name])

    async def _add_packages(self, graph: ModuleGraph, specifiers: list[str]) -> None:
        bundle = await self.transformer.bundle_packages(specifiers, externals=sorted(self.shim_sources))
        linked = LinkedModule(PACKAGES_MODULE_ID, bundle.code)
        for specifier in bundle.imports:
            if not RuntimeModule.is_runtime_name(specifier):
                raise ResolutionError(specifier, PACKAGES_MODULE_ID)
            target = f"{_RUNTIME_PREFIX}{specifier}"
            linked.dependencies[specifier] = target
            self._add_runtime_module(graph, target)
        graph.modules[PACKAGES_MODULE_ID] = linked

        packages_id = json.dumps(PACKAGES_MODULE_ID)
        for specifier in specifiers:
            module_id = f"{_PACKAGE_PREFIX}{specifier}"
            graph.modules[module_id] = LinkedModule(
                module_id,
                f"module.exports = require({packages_id})[{json.dumps(specifier)}];",
                {PACKAGES_MODULE_ID: PACKAGES_MODULE_ID},
            )
        graph.package_exports.update(bundle.exports)
        logger.debug("Bundled %d packages: %s", len(specifiers), ", ".join(specifiers))

    async def _build_file(self, path: str, store: VirtualFileStore) -> ModuleBuild:
        source = store.read(path)
        category = loader_for(path)
        if category is FileCategory.JSON:
            return ModuleBuild(_json_module_source(path, source))
        if category is FileCategory.CSS:
            return ModuleBuild(_css_module_source(path, source))
        if category is FileCategory.DATAURL:
            return ModuleBuild(f"module.exports = {json.dumps(to_data_url(path, source))};")
        return await self.transformer.transform(source, loader=category.value, sourcefile=path)


async def compile_project_bundle(
    files: Mapping[str, Any],
    entry_file: str,
    *,
    compiler: ProjectCompiler | None = None,
) -> str:
    """Compile ``files`` starting at ``entry_file``; raises ``CompileError`` on failure."""

    return await (compiler or ProjectCompiler()).compile(files, entry_file)


__all__ = [
    "ENTRY_MODULE_ID",
    "LinkedModule",
    "ModuleGraph",
    "PACKAGES_MODULE_ID",
    "ProjectCompiler",
    "Transformer",
    "add_compile_hints",
    "compile_project_bundle",
    "find_missing_exports",
    "is_blank_module",
    "link_bundle",
    "locate_import",
    "to_data_url",
]

"""esbuild subprocess driver, metafile reading and diagnostic extraction.

Every virtual file is built with ``--bundle --external:*``: esbuild parses the
file, keeps each import as an external ``require``/``import`` and records it in
the metafile. Dependencies and export names therefore come from esbuild's own
parser, never from scanning source text.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Iterable, Mapping, Sequence

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ESBUILD_BIN = (os.getenv("ESBUILD_BIN") or "").strip() or "esbuild"
ESBUILD_TARGET = (os.getenv("ESBUILD_TARGET") or "").strip() or "es2020"
PACKAGE_RESOLVE_DIR = (os.getenv("PACKAGE_RESOLVE_DIR") or "").strip() or os.getcwd()

MAX_REPORTED_DIAGNOSTICS = 5
PACKAGES_SOURCEFILE = "<packages>"

_ERROR_HEADER_RE = re.compile(r"^\s*(?:✘|X|×)?\s*\[ERROR\]\s+(?P<text>.+?)\s*$")
_LOCATION_RE = re.compile(r"^\s+(?P<file>\S.*?):(?P<line>\d+):(?P<column>\d+):\s*$")
_SNIPPET_RE = re.compile(r"^\s*(?P<line>\d+)\s+[│|]\s?(?P<text>.*)$")
_SUMMARY_RE = re.compile(r"^\d+ (?:error|warning)s?(?: and \d+ warnings?)?$")

# esbuild prints every external static import or re-export of its ESM output
# as one statement starting at column 0.
_ESM_FROM_RE = re.compile(
    r"""^(?P<keyword>import|export)\s*(?P<clause>[^;"'`]*?)\s*from\s*"(?P<specifier>(?:[^"\\\n]|\\.)*)";?[ \t]*$""",
    re.MULTILINE,
)
_ALIAS_RE = re.compile(r"\s+as\s+")


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One esbuild error; ``column`` is zero-based as esbuild reports it."""

    text: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    line_text: str | None = None

    def format(self) -> str:
        if self.file is None:
            return self.text
        column = self.column + 1 if self.column is not None else None
        at = ":".join(str(part) for part in (self.file, self.line, column) if part)
        context = f"\n> {self.line_text.strip()}" if self.line_text else ""
        return f"{at} {self.text}{context}"


@dataclass(frozen=True, slots=True)
class ImportBinding:
    """A name one module imports (or re-exports) from ``specifier``."""

    specifier: str
    name: str


@dataclass(frozen=True, slots=True)
class ModuleBuild:
    """One transformed virtual file.

    ``exports`` is ``None`` when the file is not an ES module, since the
    export names of CommonJS code are only known at run time.
    """

    code: str
    imports: tuple[str, ...] = ()
    exports: frozenset[str] | None = None
    bindings: tuple[ImportBinding, ...] = ()
    star_exports: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PackageBundle:
    """All installed packages of one compile, bundled as a single CommonJS module.

    The module exports an object keyed by package specifier. ``exports`` maps
    each specifier to its static ESM export names, or ``None`` when unknown.
    """

    code: str
    imports: tuple[str, ...] = ()
    exports: Mapping[str, frozenset[str] | None] = field(default_factory=dict)


class BundlerError(Exception):
    """esbuild exited with errors (or could not be started)."""

    def __init__(self, message: str, diagnostics: Sequence[Diagnostic] = ()):
        self.diagnostics = tuple(diagnostics)
        super().__init__(message)


def parse_esbuild_diagnostics(stderr: str) -> list[Diagnostic]:
    """Parse esbuild's plain-text (``--color=false``) error log."""

    diagnostics: list[Diagnostic] = []
    current: dict | None = None

    def _flush() -> None:
        if current is not None:
            diagnostics.append(Diagnostic(**current))

    for raw_line in stderr.splitlines():
        line = raw_line.rstrip()
        header = _ERROR_HEADER_RE.match(line)
        if header:
            _flush()
            current = {"text": header.group("text")}
            continue
        if current is None or not line.strip() or _SUMMARY_RE.match(line.strip()):
            continue
        if "file" not in current:
            location = _LOCATION_RE.match(line)
            if location:
                current.update(
                    file=location.group("file"),
                    line=int(location.group("line")),
                    column=int(location.group("column")),
                )
            continue
        if "line_text" not in current:
            snippet = _SNIPPET_RE.match(line)
            if snippet and int(snippet.group("line")) == current["line"]:
                current["line_text"] = snippet.group("text")
    _flush()
    return diagnostics


def format_diagnostics(diagnostics: Iterable[Diagnostic], *, limit: int = MAX_REPORTED_DIAGNOSTICS) -> str:
    return "\n".join(diagnostic.format() for diagnostic in list(diagnostics)[:limit])


def _single_output(metafile: Mapping[str, Any]) -> Mapping[str, Any]:
    outputs = metafile.get("outputs") or {}
    for path, output in outputs.items():
        if not path.endswith(".map"):
            return output
    return {}


def metafile_imports(metafile: Mapping[str, Any]) -> tuple[str, ...]:
    """External import paths in first-seen order, exactly as written in the source."""

    records = _single_output(metafile).get("imports")
    if records is None:
        records = [record for entry in (metafile.get("inputs") or {}).values() for record in entry.get("imports", [])]
    seen: dict[str, None] = {}
    for record in records:
        if record.get("external") and record.get("path"):
            seen.setdefault(record["path"], None)
    return tuple(seen)


def metafile_exports(metafile: Mapping[str, Any], *, require_esm: bool = True) -> frozenset[str] | None:
    """Static export names of the single output, or ``None`` when they are not known."""

    if require_esm:
        formats = {entry.get("format") for entry in (metafile.get("inputs") or {}).values()}
        if formats != {"esm"}:
            return None
    exports = _single_output(metafile).get("exports")
    if exports is None:
        return None
    return frozenset(str(name) for name in exports)


def _binding_name(raw: str) -> str:
    return _ALIAS_RE.split(raw.strip(), 1)[0].strip()


def parse_esm_bindings(esm_code: str) -> tuple[tuple[ImportBinding, ...], tuple[str, ...]]:
    """Named imports and ``export *`` sources in esbuild's ESM output.

    Default imports are reported as the name ``default``; namespace imports
    bind no single name and are skipped.
    """

    bindings: dict[ImportBinding, None] = {}
    star_exports: dict[str, None] = {}
    for match in _ESM_FROM_RE.finditer(esm_code):
        specifier = json.loads(f'"{match.group("specifier")}"')
        clause = match.group("clause")
        braces = re.search(r"\{(?P<body>[^}]*)\}", clause)
        outside = clause if braces is None else clause[: braces.start()] + clause[braces.end():]
        outside = outside.strip().strip(",").strip()
        names: list[str] = []
        if match.group("keyword") == "import":
            if outside and not outside.startswith("*"):
                names.append("default")
        elif outside == "*":
            star_exports.setdefault(specifier, None)
        if braces is not None:
            names.extend(_binding_name(item) for item in braces.group("body").split(",") if item.strip())
        for name in names:
            bindings.setdefault(ImportBinding(specifier, name), None)
    return tuple(bindings), tuple(star_exports)


class EsbuildTransformer:
    """Runs the esbuild CLI; one set of subprocesses per call, nothing shared."""

    def __init__(
        self,
        *,
        esbuild_bin: str | None = None,
        target: str | None = None,
        resolve_dir: str | None = None,
    ):
        self.esbuild_bin = esbuild_bin or ESBUILD_BIN
        self.target = target or ESBUILD_TARGET
        self.resolve_dir = resolve_dir or PACKAGE_RESOLVE_DIR

    def _common_args(self, output_format: str = "cjs") -> list[str]:
        return [
            f"--format={output_format}",
            "--platform=browser",
            f"--target={self.target}",
            "--log-level=error",
            "--color=false",
        ]

    async def transform(self, source: str, *, loader: str, sourcefile: str) -> ModuleBuild:
        """Compile one virtual file to CommonJS with the automatic JSX runtime.

        A second ESM build of the same source supplies the metafile the
        imports and exports are read from.
        """

        args = [
            f"--loader={loader}",
            "--jsx=automatic",
            f"--sourcefile={sourcefile}",
            "--bundle",
            "--external:*",
        ]
        (code, _), (esm_code, metafile) = await self._gather(
            self._run([*args, *self._common_args("cjs")], source),
            self._run([*args, *self._common_args("esm")], source, metafile=True),
        )
        imports = metafile_imports(metafile)
        known = set(imports)
        bindings, star_exports = parse_esm_bindings(esm_code)
        return ModuleBuild(
            code=code,
            imports=imports,
            exports=metafile_exports(metafile),
            bindings=tuple(binding for binding in bindings if binding.specifier in known),
            star_exports=tuple(specifier for specifier in star_exports if specifier in known),
        )

    async def bundle_packages(self, specifiers: Iterable[str], *, externals: Iterable[str]) -> PackageBundle:
        """Bundle installed packages into one CommonJS module, leaving ``externals`` as requires.

        Packages share one esbuild run, so a package and its subpath imports
        (``@remotion/transitions`` and ``@remotion/transitions/fade``) share
        their internals.
        """

        specifiers = list(dict.fromkeys(specifiers))
        external_args = [f"--external:{name}" for name in externals]
        entries = ",\n".join(f"  {json.dumps(spec)}: require({json.dumps(spec)})" for spec in specifiers)
        stub = f"module.exports = {{\n{entries}\n}};\n"
        bundle_args = [
            "--bundle",
            "--loader=js",
            f"--sourcefile={PACKAGES_SOURCEFILE}",
            *external_args,
            *self._common_args("cjs"),
        ]
        export_args = ["--bundle", "--loader=js", *external_args, *self._common_args("esm")]
        (code, metafile), *analyses = await self._gather(
            self._run(bundle_args, stub, metafile=True),
            *(
                self._run([*export_args, f"--sourcefile={spec}"], f"export * from {json.dumps(spec)};\n", metafile=True)
                for spec in specifiers
            ),
        )
        exports: dict[str, frozenset[str] | None] = {}
        for spec, (esm_code, analysis) in zip(specifiers, analyses):
            names = metafile_exports(analysis, require_esm=False)
            _, star_exports = parse_esm_bindings(esm_code)
            # CommonJS packages, and re-exports of runtime modules, list no usable names.
            exports[spec] = None if star_exports or not names else names
        return PackageBundle(code=code, imports=metafile_imports(metafile), exports=exports)

    @staticmethod
    async def _gather(*runs: Awaitable[Any]) -> list[Any]:
        results = await asyncio.gather(*runs, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _run(
        self,
        args: list[str],
        stdin_text: str,
        *,
        metafile: bool = False,
    ) -> tuple[str, dict[str, Any]]:
        # Source comes in on stdin; only esbuild's output and metafile touch the scratch dir.
        with tempfile.TemporaryDirectory(prefix="esbuild-") as scratch:
            outfile = Path(scratch) / "out.js"
            metafile_path = Path(scratch) / "meta.json"
            run_args = [*args, f"--outfile={outfile}"]
            if metafile:
                run_args.append(f"--metafile={metafile_path}")
            logger.debug("Running %s %s", self.esbuild_bin, " ".join(run_args))
            try:
                process = await asyncio.create_subprocess_exec(
                    self.esbuild_bin,
                    *run_args,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.resolve_dir,
                )
            except OSError as exc:
                raise BundlerError(f"Could not start esbuild ({self.esbuild_bin}): {exc}") from exc

            _, stderr = await process.communicate(stdin_text.encode("utf-8"))
            stderr_text = stderr.decode("utf-8", errors="replace")
            if process.returncode != 0:
                diagnostics = parse_esbuild_diagnostics(stderr_text)
                message = format_diagnostics(diagnostics) if diagnostics else (stderr_text.strip() or f"esbuild exited with status {process.returncode}.")
                raise BundlerError(message, diagnostics)

            code = outfile.read_text(encoding="utf-8") if outfile.exists() else ""
            meta: dict[str, Any] = {}
            if metafile and metafile_path.exists():
                meta = json.loads(metafile_path.read_text(encoding="utf-8"))
            return code, meta


__all__ = [
    "BundlerError",
    "Diagnostic",
    "ESBUILD_BIN",
    "ESBUILD_TARGET",
    "EsbuildTransformer",
    "ImportBinding",
    "MAX_REPORTED_DIAGNOSTICS",
    "ModuleBuild",
    "PACKAGES_SOURCEFILE",
    "PACKAGE_RESOLVE_DIR",
    "PackageBundle",
    "format_diagnostics",
    "metafile_imports",
    "metafile_exports",
    "parse_esm_bindings",
    "parse_esbuild_diagnostics",
]

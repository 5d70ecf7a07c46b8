"""Resolve import specifiers against runtime shims, virtual files, or packages."""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Container

from project_errors import ResolutionError, ValidationError
from runtime_shims import RuntimeModule
from virtual_files import SUPPORTED_FILE_EXTENSIONS, has_supported_extension, normalize_virtual_path

STDIN_IMPORTER = "<stdin>"


class ImportKind(str, Enum):
    RUNTIME = "runtime"
    FILE = "file"
    PACKAGE = "package"


@dataclass(frozen=True, slots=True)
class ResolvedImport:
    kind: ImportKind
    path: str


def is_path_specifier(specifier: str) -> bool:
    return specifier.startswith(".") or specifier.startswith("/")


def candidate_paths(base_path: str) -> list[str]:
    """Lookup order for ``base_path``: verbatim, then extensions, then ``index`` files."""

    if has_supported_extension(base_path):
        return [base_path]

    candidates = [base_path]
    candidates.extend(f"{base_path}{ext}" for ext in SUPPORTED_FILE_EXTENSIONS)
    candidates.extend(posixpath.join(base_path, f"index{ext}") for ext in SUPPORTED_FILE_EXTENSIONS)
    return candidates


def _absolute_base(specifier: str, importer: str) -> str:
    if specifier.startswith("/"):
        return normalize_virtual_path(specifier)
    joined = posixpath.join(posixpath.dirname(importer), specifier)
    return normalize_virtual_path(joined)


def resolve_virtual_import(specifier: str, importer: str, files: Container[str]) -> str | None:
    try:
        base_path = _absolute_base(specifier, importer)
    except ValidationError:
        return None
    for candidate in candidate_paths(base_path):
        if candidate in files:
            return candidate
    return None


def resolve_import(
    specifier: str,
    importer: str | None,
    files: Container[str],
    *,
    entry_file: str | None = None,
) -> ResolvedImport:
    """Classify ``specifier`` imported from ``importer``.

    Runtime module names win over everything, path-like specifiers must hit
    a virtual file, and any other bare specifier is left to the package
    resolver. Raises ``ResolutionError`` for path specifiers with no match.
    """

    if RuntimeModule.is_runtime_name(specifier):
        return ResolvedImport(ImportKind.RUNTIME, specifier)

    if is_path_specifier(specifier):
        if not importer or importer == STDIN_IMPORTER:
            importer = entry_file or "/"
        resolved = resolve_virtual_import(specifier, importer, files)
        if resolved is None:
            raise ResolutionError(specifier, importer)
        return ResolvedImport(ImportKind.FILE, resolved)

    return ResolvedImport(ImportKind.PACKAGE, specifier)


__all__ = [
    "ImportKind",
    "ResolvedImport",
    "STDIN_IMPORTER",
    "candidate_paths",
    "is_path_specifier",
    "resolve_import",
    "resolve_virtual_import",
]

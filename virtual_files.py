"""In-memory file map helpers: path normalization and file categories."""
from __future__ import annotations

import posixpath
from enum import Enum
from typing import Any, Iterator, Mapping

from project_errors import ValidationError

SUPPORTED_FILE_EXTENSIONS: tuple[str, ...] = (
    ".tsx",
    ".ts",
    ".jsx",
    ".js",
    ".mjs",
    ".cjs",
    ".json",
    ".css",
    ".svg",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".mp4",
    ".webm",
    ".mov",
    ".mp3",
    ".wav",
    ".ogg",
)


class FileCategory(str, Enum):
    """How a virtual file is turned into a module (mirrors esbuild loader names)."""

    TSX = "tsx"
    TS = "ts"
    JSX = "jsx"
    JS = "js"
    JSON = "json"
    CSS = "css"
    DATAURL = "dataurl"


_CATEGORY_BY_EXTENSION: dict[str, FileCategory] = {
    ".tsx": FileCategory.TSX,
    ".ts": FileCategory.TS,
    ".jsx": FileCategory.JSX,
    ".js": FileCategory.JS,
    ".mjs": FileCategory.JS,
    ".cjs": FileCategory.JS,
    ".json": FileCategory.JSON,
    ".css": FileCategory.CSS,
    **{
        ext: FileCategory.DATAURL
        for ext in (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".mp4", ".webm", ".mov", ".mp3", ".wav", ".ogg")
    },
}


def extension_of(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


def has_supported_extension(path: str) -> bool:
    return extension_of(path) in _CATEGORY_BY_EXTENSION


def loader_for(path: str) -> FileCategory:
    """Return the file category for ``path``; unknown extensions are tried as TSX."""

    return _CATEGORY_BY_EXTENSION.get(extension_of(path), FileCategory.TSX)


def normalize_virtual_path(file_path: str) -> str:
    """Normalize ``file_path`` into an absolute POSIX path rooted at ``/``.

    Backslashes are treated as separators and ``..`` segments cannot climb
    above the root, so ``"src\\\\a.tsx"``, ``"/src/./a.tsx"`` and
    ``"/../src/a.tsx"`` all map to ``"/src/a.tsx"``.
    """

    if not isinstance(file_path, str):
        raise ValidationError(f"Invalid file path: {file_path!r}")
    unix_path = file_path.replace("\\", "/").lstrip("/")
    normalized = posixpath.normpath(f"/{unix_path}")
    if not normalized.startswith("/") or normalized == "/":
        raise ValidationError(f"Invalid file path: {file_path}")
    return normalized


def normalize_file_map(files: Mapping[str, Any]) -> dict[str, str]:
    normalized: dict[str, str] = {}
    for raw_path, contents in files.items():
        if not isinstance(contents, str):
            raise ValidationError(f'File "{raw_path}" must be a string.')
        normalized[normalize_virtual_path(raw_path)] = contents
    return normalized


class VirtualFileStore:
    """Normalized path -> source text mapping for a single compile call."""

    def __init__(self, files: Mapping[str, Any]):
        self._files = normalize_file_map(files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def get(self, path: str) -> str | None:
        return self._files.get(path)

    def read(self, path: str) -> str:
        contents = self._files.get(path)
        if contents is None:
            raise KeyError(path)
        return contents

    def paths(self) -> list[str]:
        return sorted(self._files)


__all__ = [
    "FileCategory",
    "SUPPORTED_FILE_EXTENSIONS",
    "VirtualFileStore",
    "extension_of",
    "has_supported_extension",
    "loader_for",
    "normalize_file_map",
    "normalize_virtual_path",
]

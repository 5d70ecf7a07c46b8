"""Error types raised while resolving and compiling video projects."""
from __future__ import annotations


class ProjectError(Exception):
    """Base class for failures that end up in a response's ``compileError``."""


class ValidationError(ProjectError):
    """The request or the resolved project document is malformed."""


class CompileError(ProjectError):
    """The project could not be turned into a bundle."""


class ResolutionError(CompileError):
    """An import specifier did not match a runtime module or virtual file."""

    def __init__(self, specifier: str, importer: str, message: str | None = None):
        self.specifier = specifier
        self.importer = importer
        super().__init__(message or f'Cannot resolve import "{specifier}" from "{importer}".')


class EmptyOutputError(CompileError):
    def __init__(self, message: str = "Compilation produced no JavaScript output."):
        super().__init__(message)


__all__ = [
    "CompileError",
    "EmptyOutputError",
    "ProjectError",
    "ResolutionError",
    "ValidationError",
]

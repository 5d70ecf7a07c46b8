"""Request and project document models for the video tools."""
from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from project_errors import ValidationError

_FILES_SHAPE_HINT = 'files must be a JSON object like {"/src/Video.tsx": "...code..."}'


class UpdateMode(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"


@dataclass(slots=True)
class VideoRequest:
    """One create/update call as received from the transport layer."""

    title: str | None = None
    composition_id: str | None = None
    width: float | None = None
    height: float | None = None
    fps: float | None = None
    duration_in_frames: float | None = None
    entry_file: str | None = None
    files: dict[str, str] | None = None
    default_props: dict[str, Any] | None = None
    input_props: dict[str, Any] | None = None
    use_previous_project: bool = True
    update_mode: UpdateMode = UpdateMode.MERGE
    delete_files: list[str] = field(default_factory=list)
    reset_project: bool = False


@dataclass(slots=True)
class ProjectDocument:
    title: str
    composition_id: str
    width: float
    height: float
    fps: float
    duration_in_frames: float
    entry_file: str
    files: dict[str, str]
    default_props: dict[str, Any] = field(default_factory=dict)
    input_props: dict[str, Any] = field(default_factory=dict)

    def meta(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "compositionId": self.composition_id,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "durationInFrames": self.duration_in_frames,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.meta(),
            "entryFile": self.entry_file,
            "files": dict(self.files),
            "defaultProps": copy.deepcopy(self.default_props),
            "inputProps": copy.deepcopy(self.input_props),
        }

    def copy(self) -> "ProjectDocument":
        return ProjectDocument(
            title=self.title,
            composition_id=self.composition_id,
            width=self.width,
            height=self.height,
            fps=self.fps,
            duration_in_frames=self.duration_in_frames,
            entry_file=self.entry_file,
            files=dict(self.files),
            default_props=copy.deepcopy(self.default_props),
            input_props=copy.deepcopy(self.input_props),
        )


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key}: Expected string, received {type(value).__name__}")
    return value


def _optional_number(payload: Mapping[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key}: Expected number, received {type(value).__name__}")
    return value


def _optional_bool(payload: Mapping[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key}: Expected boolean, received {type(value).__name__}")
    return value


def _optional_record(payload: Mapping[str, Any], key: str) -> dict[str, Any] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValidationError(f"{key}: Expected object, received {type(value).__name__}")
    return {str(k): v for k, v in value.items()}


def parse_files_argument(value: Any) -> dict[str, str] | None:
    """Accept ``files`` as a mapping or as a JSON string encoding one."""

    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise ValidationError(
                'files must be a valid JSON string, e.g. \'{"/src/Video.tsx":"...code..."}\''
            ) from exc
    if not isinstance(value, Mapping):
        raise ValidationError(_FILES_SHAPE_HINT)

    files: dict[str, str] = {}
    for path, contents in value.items():
        if not isinstance(contents, str):
            raise ValidationError(f'files.{path}: File "{path}" must be a string.')
        files[str(path)] = contents
    return files


def parse_video_request(payload: Mapping[str, Any]) -> VideoRequest:
    """Validate the camelCase wire payload into a ``VideoRequest``."""

    if not isinstance(payload, Mapping):
        raise ValidationError("input: Expected object")

    raw_mode = payload.get("updateMode")
    if raw_mode is None:
        update_mode = UpdateMode.MERGE
    else:
        try:
            update_mode = UpdateMode(raw_mode)
        except ValueError as exc:
            raise ValidationError(f"updateMode: Expected 'merge' | 'replace', received {raw_mode!r}") from exc

    raw_delete = payload.get("deleteFiles")
    if raw_delete is None:
        delete_files: list[str] = []
    elif isinstance(raw_delete, (list, tuple)) and all(isinstance(item, str) for item in raw_delete):
        delete_files = list(raw_delete)
    else:
        raise ValidationError("deleteFiles: Expected array of strings")

    return VideoRequest(
        title=_optional_str(payload, "title"),
        composition_id=_optional_str(payload, "compositionId"),
        width=_optional_number(payload, "width"),
        height=_optional_number(payload, "height"),
        fps=_optional_number(payload, "fps"),
        duration_in_frames=_optional_number(payload, "durationInFrames"),
        entry_file=_optional_str(payload, "entryFile"),
        files=parse_files_argument(payload.get("files")),
        default_props=_optional_record(payload, "defaultProps"),
        input_props=_optional_record(payload, "inputProps"),
        use_previous_project=_optional_bool(payload, "usePreviousProject", True),
        update_mode=update_mode,
        delete_files=delete_files,
        reset_project=_optional_bool(payload, "resetProject", False),
    )


def validate_positive_number(name: str, value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        return f"{name} must be a positive number."
    return None


__all__ = [
    "ProjectDocument",
    "UpdateMode",
    "VideoRequest",
    "parse_files_argument",
    "parse_video_request",
    "validate_positive_number",
]

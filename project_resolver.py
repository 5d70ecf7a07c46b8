"""Reconcile an incoming video request with the session's previous project."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Sequence

from app_constants import DEFAULT_ENTRY_FILE, DEFAULT_META
from project_errors import ValidationError
from video_project import ProjectDocument, UpdateMode, VideoRequest, validate_positive_number
from virtual_files import normalize_virtual_path

NO_FILES_MESSAGE = (
    "No project files available. Pass files, or keep usePreviousProject enabled "
    "after a successful create_video call in this session."
)


@dataclass(slots=True)
class ProjectDraft:
    """Resolved project fields; ``files`` is ``None`` when nothing could be reused."""

    title: str
    composition_id: str
    width: Any
    height: Any
    fps: Any
    duration_in_frames: Any
    entry_file: str
    files: dict[str, str] | None
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


@dataclass(slots=True)
class ResolvedProjectInput:
    project: ProjectDraft
    used_previous: bool
    update_mode: UpdateMode
    deleted_files: int
    can_reuse: bool


def _first_not_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def delete_files_from_map(files: MutableMapping[str, str], delete_files: Sequence[str]) -> int:
    """Remove each path (raw and normalized form) from ``files``; return the removal count."""

    removed = 0
    for raw_path in delete_files:
        candidates = [raw_path]
        try:
            normalized = normalize_virtual_path(raw_path)
        except ValidationError:
            normalized = None
        if normalized is not None and normalized != raw_path:
            candidates.append(normalized)

        for file_path in candidates:
            if file_path in files:
                del files[file_path]
                removed += 1
    return removed


def resolve_project_input(request: VideoRequest, previous: ProjectDocument | None) -> ResolvedProjectInput:
    """Merge ``request`` over ``previous`` (when reuse is allowed) and apply deletions.

    Every scalar field takes the request value, then the previous value, then
    the default. Files merge over the previous map, or replace it in
    ``replace`` mode; with no request files the previous map is reused as is.
    """

    can_reuse = request.use_previous_project
    base = previous if can_reuse and previous is not None else None
    update_mode = request.update_mode

    files: dict[str, str] | None
    if request.files is not None:
        if base is not None and update_mode is UpdateMode.MERGE:
            files = {**base.files, **request.files}
        else:
            files = dict(request.files)
    elif base is not None:
        files = dict(base.files)
    else:
        files = None

    deleted_files = delete_files_from_map(files, request.delete_files) if files is not None else 0

    if request.default_props is not None:
        default_props = copy.deepcopy(request.default_props)
    else:
        default_props = copy.deepcopy(base.default_props) if base is not None else {}
    if request.input_props is not None:
        input_props = copy.deepcopy(request.input_props)
    else:
        input_props = copy.deepcopy(base.input_props) if base is not None else {}

    project = ProjectDraft(
        title=_first_not_none(request.title, base and base.title, DEFAULT_META["title"]),
        composition_id=_first_not_none(request.composition_id, base and base.composition_id, DEFAULT_META["compositionId"]),
        width=_first_not_none(request.width, base and base.width, DEFAULT_META["width"]),
        height=_first_not_none(request.height, base and base.height, DEFAULT_META["height"]),
        fps=_first_not_none(request.fps, base and base.fps, DEFAULT_META["fps"]),
        duration_in_frames=_first_not_none(
            request.duration_in_frames, base and base.duration_in_frames, DEFAULT_META["durationInFrames"]
        ),
        entry_file=_first_not_none(request.entry_file, base and base.entry_file, DEFAULT_ENTRY_FILE),
        files=files,
        default_props=default_props,
        input_props=input_props,
    )
    return ResolvedProjectInput(
        project=project,
        used_previous=base is not None,
        update_mode=update_mode,
        deleted_files=deleted_files,
        can_reuse=can_reuse,
    )


def build_project_document(draft: ProjectDraft) -> ProjectDocument:
    """Validate a resolved draft into a ``ProjectDocument`` ready to compile."""

    if not draft.files:
        raise ValidationError(NO_FILES_MESSAGE)

    for name, value in (
        ("width", draft.width),
        ("height", draft.height),
        ("fps", draft.fps),
        ("durationInFrames", draft.duration_in_frames),
    ):
        error = validate_positive_number(name, value)
        if error:
            raise ValidationError(error)

    return ProjectDocument(
        title=draft.title,
        composition_id=draft.composition_id,
        width=draft.width,
        height=draft.height,
        fps=draft.fps,
        duration_in_frames=draft.duration_in_frames,
        entry_file=draft.entry_file,
        files=dict(draft.files),
        default_props=draft.default_props,
        input_props=draft.input_props,
    )


__all__ = [
    "NO_FILES_MESSAGE",
    "ProjectDraft",
    "ResolvedProjectInput",
    "build_project_document",
    "delete_files_from_map",
    "resolve_project_input",
]

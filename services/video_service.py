"""Request pipeline behind the create/update video tools."""
from __future__ import annotations

import asyncio
import json
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Mapping

from app_constants import DEFAULT_META, ERROR_FALLBACK_BUNDLE
from compile_log import log_compile_event
from compiler import ProjectCompiler, compile_project_bundle
from project_errors import ProjectError, ValidationError
from project_resolver import ResolvedProjectInput, build_project_document, resolve_project_input
from session_store import SessionStore
from video_project import ProjectDocument, UpdateMode, parse_video_request

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

_SESSION_LOCKS: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass(slots=True)
class VideoToolResult:
    """Response artifact plus the human-readable status text."""

    project_data: dict[str, Any]
    text: str

    @property
    def ok(self) -> bool:
        return not self.project_data.get("compileError")

    @property
    def video_project(self) -> str:
        return json.dumps(self.project_data)


def build_project_data(
    meta: Mapping[str, Any] | None = None,
    *,
    bundle: str | None = None,
    default_props: Mapping[str, Any] | None = None,
    input_props: Mapping[str, Any] | None = None,
    compile_error: str | None = None,
) -> dict[str, Any]:
    """Response artifact; missing meta fields fall back to the defaults."""

    meta = meta or {}
    data: dict[str, Any] = {
        "meta": {
            key: meta[key] if meta.get(key) is not None else default
            for key, default in DEFAULT_META.items()
        },
        "bundle": bundle if bundle is not None else ERROR_FALLBACK_BUNDLE,
        "defaultProps": dict(default_props or {}),
        "inputProps": dict(input_props or {}),
    }
    if compile_error:
        data["compileError"] = compile_error
    return data


def fail_project(
    message: str,
    meta: Mapping[str, Any] | None = None,
    *,
    default_props: Mapping[str, Any] | None = None,
    input_props: Mapping[str, Any] | None = None,
) -> VideoToolResult:
    project_data = build_project_data(
        meta,
        default_props=default_props,
        input_props=input_props,
        compile_error=message,
    )
    return VideoToolResult(project_data=project_data, text=f"Project error: {message}")


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def _status_prefix_lines(resolved: ResolvedProjectInput, *, reset: bool, files_given: bool) -> list[str]:
    lines: list[str] = []
    if reset:
        lines.append("Reset session project before applying this request.")
    if resolved.used_previous:
        if not files_given:
            lines.append("Reused previous session project files.")
        elif resolved.update_mode is UpdateMode.MERGE:
            lines.append("Merged with previous project.")
        else:
            lines.append("Replaced previous project files.")
    elif not resolved.can_reuse:
        lines.append("Previous session project ignored (usePreviousProject is false).")
    if resolved.deleted_files:
        noun = "file" if resolved.deleted_files == 1 else "files"
        lines.append(f"Deleted {resolved.deleted_files} {noun}.")
    return lines


def _success_text(document: ProjectDocument, prefix_lines: list[str], tool_name: str) -> str:
    seconds = document.duration_in_frames / document.fps
    lines = [
        *prefix_lines,
        f'Created video project "{document.title}".',
        f"Entry: {document.entry_file} ({len(document.files)} files).",
        (
            f"Fallback meta: {_format_number(document.width)}x{_format_number(document.height)}, "
            f"{_format_number(document.fps)}fps, {_format_number(document.duration_in_frames)} frames "
            f"(~{seconds:.1f}s)."
        ),
        "The player is using merged props (defaultProps + inputProps).",
        f"To iterate: update files, props, or metadata and call {tool_name} again.",
    ]
    return "\n".join(line for line in lines if line.strip())


def _session_lock(session_id: str) -> asyncio.Lock:
    lock = _SESSION_LOCKS.get(session_id)
    if lock is None:
        lock = asyncio.Lock()
        _SESSION_LOCKS[session_id] = lock
    return lock


async def run_video_tool(
    payload: Mapping[str, Any],
    *,
    session_id: str | None,
    store: SessionStore,
    tool_name: str = "create_video",
    compiler: ProjectCompiler | None = None,
) -> VideoToolResult:
    """Resolve, remember and compile one video request for ``session_id``.

    Calls for the same session run one at a time so that the
    read-merge-remember sequence cannot interleave. Every failure is returned
    as a well-formed artifact carrying the fallback bundle and
    ``compileError``; nothing is raised to the caller.
    """

    session_id = session_id or DEFAULT_SESSION_ID
    lock = _session_lock(session_id)
    async with lock:
        return await _run_locked(payload, session_id=session_id, store=store, tool_name=tool_name, compiler=compiler)


async def _run_locked(
    payload: Mapping[str, Any],
    *,
    session_id: str,
    store: SessionStore,
    tool_name: str,
    compiler: ProjectCompiler | None,
) -> VideoToolResult:
    try:
        request = parse_video_request(payload)
    except ValidationError as exc:
        await _record(session_id, tool_name, error=f"Invalid input: {exc}")
        return fail_project(f"Invalid input: {exc}")

    if request.reset_project:
        store.clear(session_id)

    resolved = resolve_project_input(request, store.get(session_id))
    draft = resolved.project
    try:
        document = build_project_document(draft)
    except ValidationError as exc:
        await _record(session_id, tool_name, error=str(exc), entry_file=draft.entry_file)
        return fail_project(
            str(exc),
            draft.meta(),
            default_props=draft.default_props,
            input_props=draft.input_props,
        )

    # Remembered before compiling so a failing compile keeps the edit for the next call.
    store.remember(session_id, document)

    try:
        bundle = await compile_project_bundle(document.files, document.entry_file, compiler=compiler)
    except ProjectError as exc:
        message = f"Project compilation error: {exc}"
        logger.info("Compile failed for session %s: %s", session_id, exc)
        await _record(
            session_id,
            tool_name,
            error=message,
            entry_file=document.entry_file,
            file_count=len(document.files),
            used_previous=resolved.used_previous,
        )
        return fail_project(
            message,
            document.meta(),
            default_props=document.default_props,
            input_props=document.input_props,
        )

    project_data = build_project_data(
        document.meta(),
        bundle=bundle,
        default_props=document.default_props,
        input_props=document.input_props,
    )
    prefix_lines = _status_prefix_lines(
        resolved,
        reset=request.reset_project,
        files_given=request.files is not None,
    )
    await _record(
        session_id,
        tool_name,
        entry_file=document.entry_file,
        file_count=len(document.files),
        used_previous=resolved.used_previous,
    )
    return VideoToolResult(project_data=project_data, text=_success_text(document, prefix_lines, tool_name))


async def _record(
    session_id: str,
    tool_name: str,
    *,
    error: str | None = None,
    entry_file: str | None = None,
    file_count: int = 0,
    used_previous: bool = False,
) -> None:
    # Firestore writes block; keep them off the event loop.
    await asyncio.to_thread(
        log_compile_event,
        session_id=session_id,
        tool=tool_name,
        result="fail" if error else "success",
        entry_file=entry_file,
        file_count=file_count,
        used_previous=used_previous,
        error=error,
    )


__all__ = [
    "DEFAULT_SESSION_ID",
    "VideoToolResult",
    "build_project_data",
    "fail_project",
    "run_video_tool",
]

"""Audit trail of compile attempts backed by Firestore (disabled by default)."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, MutableMapping

from dotenv import load_dotenv

load_dotenv()

try:  # pragma: no cover - optional dependency checked at runtime
    from google.cloud import firestore  # type: ignore
except Exception:  # pragma: no cover - gracefully handle missing package
    firestore = None  # type: ignore

try:  # pragma: no cover - optional dependency
    from google.oauth2 import service_account  # type: ignore
except Exception:  # pragma: no cover - degrade gracefully when package missing
    service_account = None  # type: ignore

_LOGGER = logging.getLogger(__name__)

COMPILE_LOG_ENABLED = os.getenv("COMPILE_LOG_ENABLED", "false").strip().lower() in {"1", "true", "yes"}
_COMPILE_COLLECTION_RAW = os.getenv("FIRESTORE_COMPILE_COLLECTION", "compile_logs").strip()
COMPILE_LOG_COLLECTION = _COMPILE_COLLECTION_RAW or "compile_logs"
GCP_PROJECT_ID = (os.getenv("GCP_PROJECT_ID") or "").strip() or None

_REQUIRED_CREDENTIAL_FIELDS = {"type", "project_id", "private_key", "client_email"}
_MAX_ERROR_LENGTH = 1500

_COMPILE_LOG_ACTIVE = False
_COMPILE_DISABLE_REASON: str | None = None


@dataclass(slots=True)
class CompileLogEntry:
    """One recorded compile attempt."""

    id: str
    session_id: str | None
    tool: str
    result: str
    entry_file: str | None
    file_count: int
    used_previous: bool
    error: str | None
    timestamp: datetime


@lru_cache(maxsize=1)
def get_service_account_credentials() -> Any | None:
    """Service-account credentials from ``GOOGLE_APPLICATION_CREDENTIALS`` or ``GOOGLE_CREDENTIALS_JSON``."""

    if service_account is None:
        return None

    credential_path = (os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or "").strip()
    if credential_path:
        path = Path(credential_path).expanduser()
        try:
            if path.is_file():
                return service_account.Credentials.from_service_account_file(str(path))
        except Exception as exc:  # pragma: no cover - defensive logging only
            _LOGGER.warning("Failed to load Google credentials from %s: %s", path, exc)

    blob = (os.getenv("GOOGLE_CREDENTIALS_JSON") or "").strip()
    if blob:
        try:
            info = json.loads(blob)
        except ValueError:
            info = None
        if isinstance(info, Mapping) and _REQUIRED_CREDENTIAL_FIELDS.issubset(info.keys()):
            try:
                return service_account.Credentials.from_service_account_info(dict(info))
            except Exception as exc:  # pragma: no cover - defensive logging only
                _LOGGER.warning("Failed to construct Google credentials from GOOGLE_CREDENTIALS_JSON: %s", exc)
    return None


def _ensure_firestore_ready() -> None:
    if firestore is None:
        raise RuntimeError("google-cloud-firestore must be installed for compile logging")
    if GCP_PROJECT_ID:
        return
    credentials = get_service_account_credentials()
    if credentials is not None and getattr(credentials, "project_id", ""):
        return
    raise RuntimeError("Project ID for Firestore compile logging is not configured. Set GCP_PROJECT_ID.")


@lru_cache(maxsize=1)
def _get_firestore_client():
    _ensure_firestore_ready()
    client_kwargs: MutableMapping[str, Any] = {}
    credentials = get_service_account_credentials()
    if credentials is not None:
        client_kwargs["credentials"] = credentials
    project = GCP_PROJECT_ID or (getattr(credentials, "project_id", "") if credentials else "")
    if project:
        client_kwargs["project"] = project
    return firestore.Client(**client_kwargs)  # type: ignore[arg-type]


def _get_compile_collection():
    return _get_firestore_client().collection(COMPILE_LOG_COLLECTION)


def _disable_logging(reason: str) -> None:
    global _COMPILE_LOG_ACTIVE, _COMPILE_DISABLE_REASON
    if _COMPILE_LOG_ACTIVE:
        _LOGGER.warning("Disabling compile logging: %s", reason)
    _COMPILE_LOG_ACTIVE = False
    _COMPILE_DISABLE_REASON = reason


def init_compile_log() -> None:
    """Open the Firestore collection when ``COMPILE_LOG_ENABLED`` is set."""

    global _COMPILE_LOG_ACTIVE, _COMPILE_DISABLE_REASON
    if not COMPILE_LOG_ENABLED:
        _disable_logging("COMPILE_LOG_ENABLED is false")
        return

    try:
        collection = _get_compile_collection()
        list(collection.limit(1).stream())  # pragma: no cover - warm up
    except Exception as exc:  # pragma: no cover - initialization failure surfaced later
        _disable_logging(str(exc))
        return

    _COMPILE_LOG_ACTIVE = True
    _COMPILE_DISABLE_REASON = None
    _LOGGER.debug("Compile logging enabled using Firestore collection '%s'", COMPILE_LOG_COLLECTION)


def is_compile_logging_enabled() -> bool:
    return _COMPILE_LOG_ACTIVE


def get_compile_logging_status() -> tuple[bool, str | None]:
    return _COMPILE_LOG_ACTIVE, _COMPILE_DISABLE_REASON


def _normalize_result(result: str) -> str:
    return "success" if (result or "").strip().lower() == "success" else "fail"


def log_compile_event(
    *,
    session_id: str | None,
    tool: str,
    result: str,
    entry_file: str | None = None,
    file_count: int = 0,
    used_previous: bool = False,
    error: str | None = None,
) -> CompileLogEntry | None:
    """Record a compile attempt; returns ``None`` when logging is off or the write fails."""

    if not _COMPILE_LOG_ACTIVE:
        return None

    now = datetime.now(timezone.utc)
    trimmed_error = error[:_MAX_ERROR_LENGTH] if error else None
    payload: MutableMapping[str, Any] = {
        "session_id": (session_id or "").strip() or None,
        "tool": (tool or "").strip() or "unknown",
        "result": _normalize_result(result),
        "entry_file": entry_file,
        "file_count": int(file_count),
        "used_previous": bool(used_previous),
        "error": trimmed_error,
        "timestamp": now,
        "timestamp_iso": now.isoformat(),
    }

    try:
        doc_ref = _get_compile_collection().document()
        doc_ref.set(payload)
    except Exception as exc:  # pragma: no cover - never fail a compile on audit errors
        _disable_logging(str(exc))
        _LOGGER.warning("Failed to log compile event (%s): %s", tool, exc)
        return None

    return CompileLogEntry(
        id=str(getattr(doc_ref, "id", "")),
        session_id=payload["session_id"],
        tool=payload["tool"],
        result=payload["result"],
        entry_file=entry_file,
        file_count=payload["file_count"],
        used_previous=payload["used_previous"],
        error=trimmed_error,
        timestamp=now,
    )


__all__ = [
    "COMPILE_LOG_COLLECTION",
    "COMPILE_LOG_ENABLED",
    "CompileLogEntry",
    "get_compile_logging_status",
    "get_service_account_credentials",
    "init_compile_log",
    "is_compile_logging_enabled",
    "log_compile_event",
]

"""Bounded in-memory store of the last project remembered per session."""
from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict

from dotenv import load_dotenv

from app_constants import MAX_SESSION_PROJECTS
from video_project import ProjectDocument

load_dotenv()

logger = logging.getLogger(__name__)


def _capacity_from_env() -> int:
    raw = (os.getenv("SESSION_PROJECT_CAPACITY") or "").strip()
    if not raw:
        return MAX_SESSION_PROJECTS
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid SESSION_PROJECT_CAPACITY=%r", raw)
        return MAX_SESSION_PROJECTS
    return value if value > 0 else MAX_SESSION_PROJECTS


SESSION_PROJECT_CAPACITY = _capacity_from_env()


class SessionStore:
    """Last remembered ``ProjectDocument`` per session id with LRU eviction.

    ``remember`` replaces the record and moves the session to the most
    recent position; once the store holds more than ``capacity`` sessions the
    least recently remembered ones are dropped. ``get`` does not refresh
    recency. Documents are copied on the way in and out.
    """

    def __init__(self, capacity: int | None = None):
        capacity = SESSION_PROJECT_CAPACITY if capacity is None else capacity
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._projects: OrderedDict[str, ProjectDocument] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._projects)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._projects

    def remember(self, session_id: str, project: ProjectDocument) -> None:
        if not session_id:
            return
        snapshot = project.copy()
        with self._lock:
            self._projects.pop(session_id, None)
            self._projects[session_id] = snapshot
            while len(self._projects) > self._capacity:
                evicted, _ = self._projects.popitem(last=False)
                logger.debug("Evicted session project %s", evicted)

    def get(self, session_id: str) -> ProjectDocument | None:
        with self._lock:
            project = self._projects.get(session_id)
        return project.copy() if project is not None else None

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._projects.pop(session_id, None)

    def session_ids(self) -> list[str]:
        """Session ids from least to most recently remembered."""

        with self._lock:
            return list(self._projects)


__all__ = ["SESSION_PROJECT_CAPACITY", "SessionStore"]

from __future__ import annotations

import importlib
import sys

import pytest

from session_store import SessionStore
from video_project import ProjectDocument


def _project(title: str = "Demo", files: dict[str, str] | None = None) -> ProjectDocument:
    return ProjectDocument(
        title=title,
        composition_id="Main",
        width=1920,
        height=1080,
        fps=30,
        duration_in_frames=150,
        entry_file="/src/Video.tsx",
        files=files if files is not None else {"/src/Video.tsx": "export default () => null;"},
        default_props={"color": "red"},
    )


def test_remember_and_get_round_trip_copies():
    store = SessionStore(capacity=3)
    project = _project()
    store.remember("s1", project)

    project.files["/src/Other.tsx"] = "mutated"
    stored = store.get("s1")
    assert stored is not None
    assert "/src/Other.tsx" not in stored.files

    stored.default_props["color"] = "blue"
    assert store.get("s1").default_props == {"color": "red"}


def test_missing_and_empty_ids_are_total():
    store = SessionStore(capacity=2)
    assert store.get("nope") is None
    store.clear("nope")
    store.remember("", _project())
    assert len(store) == 0


def test_eviction_drops_least_recently_remembered():
    capacity = 5
    store = SessionStore(capacity=capacity)
    for index in range(capacity + 1):
        store.remember(f"s{index}", _project(title=str(index)))

    assert len(store) == capacity
    assert "s0" not in store
    assert store.session_ids() == [f"s{index}" for index in range(1, capacity + 1)]


def test_remember_refreshes_recency_but_get_does_not():
    store = SessionStore(capacity=2)
    store.remember("a", _project())
    store.remember("b", _project())
    store.get("a")
    store.remember("a", _project(title="again"))
    store.remember("c", _project())

    assert store.session_ids() == ["a", "c"]
    assert store.get("a").title == "again"


def test_clear_removes_session():
    store = SessionStore(capacity=2)
    store.remember("a", _project())
    store.clear("a")
    assert store.get("a") is None


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        SessionStore(capacity=0)


def test_capacity_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("SESSION_PROJECT_CAPACITY", "7")
    sys.modules.pop("session_store", None)
    module = importlib.import_module("session_store")
    try:
        assert module.SessionStore().capacity == 7
    finally:
        monkeypatch.delenv("SESSION_PROJECT_CAPACITY")
        sys.modules.pop("session_store", None)
        importlib.import_module("session_store")

from __future__ import annotations

import pytest

from wagate.core.config import Settings
from wagate.core.errors import WorkingStateError
from wagate.services.working_state import (
    InMemoryWorkingStateStore,
    LocalWorkingStateStore,
    get_working_state_store,
)


def test_local_store_round_trip(tmp_path) -> None:
    store = LocalWorkingStateStore(base_dir=tmp_path / "auth")

    location = store.allocate("s1")
    store.write_files("s1", {"creds.json": "{}", "pre-key-1.json": "{\"k\": 1}"})

    assert location == str(tmp_path / "auth" / "s1")
    assert store.read_files("s1") == {"creds.json": "{}", "pre-key-1.json": "{\"k\": 1}"}
    assert store.list_sessions() == ["s1"]
    store.remove("s1")
    assert store.read_files("s1") == {}
    assert store.list_sessions() == []


def test_local_store_rejects_path_traversal(tmp_path) -> None:
    store = LocalWorkingStateStore(base_dir=tmp_path)
    with pytest.raises(WorkingStateError):
        store.allocate("..")
    with pytest.raises(WorkingStateError):
        store.write_files("s1", {"../escape.json": "{}"})


def test_memory_store_is_isolated_per_session() -> None:
    store = InMemoryWorkingStateStore()
    store.write_files("a", {"creds.json": "a"})
    store.write_files("b", {"creds.json": "b"})

    snapshot = store.read_files("a")
    snapshot["creds.json"] = "mutated"

    assert store.read_files("a") == {"creds.json": "a"}
    assert store.location("b") == "memory://b"
    assert store.list_sessions() == ["a", "b"]


def test_store_selection_from_settings(tmp_path) -> None:
    assert isinstance(get_working_state_store(Settings(working_state_backend="memory")), InMemoryWorkingStateStore)
    local = get_working_state_store(Settings(working_state_backend="local", working_state_dir=str(tmp_path)))
    assert isinstance(local, LocalWorkingStateStore)
    assert local.base_dir == tmp_path


def test_file_names_may_carry_base64_characters(tmp_path) -> None:
    store = LocalWorkingStateStore(base_dir=tmp_path)
    files = {"app-state-sync-key-AAAAAJ+b=.json": "{}", "sender-key-120363@g.us--1:2.json": "{}"}

    store.write_files("s1", files)

    assert store.read_files("s1") == files
    assert sorted(path.name for path in (tmp_path / "s1").iterdir()) == sorted(files)


@pytest.mark.parametrize("name", ["", "..", "nested/creds.json", "back\\slash.json", "nul\0.json"])
def test_rejected_file_name_leaves_no_partial_write(tmp_path, name: str) -> None:
    local = LocalWorkingStateStore(base_dir=tmp_path)
    memory = InMemoryWorkingStateStore()
    for store in (local, memory):
        with pytest.raises(WorkingStateError):
            store.write_files("s1", {"creds.json": "{}", name: "{}"})
        assert store.read_files("s1") == {}

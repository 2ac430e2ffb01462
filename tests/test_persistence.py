"""
Tests for persistence — the in-memory store and its state file.
"""

import json
from pathlib import Path

import pytest

from tofuplane.core.models import Execution, Module, ModuleSpec, ObjectMeta
from tofuplane.core.persistence.memory_store import MemoryStore, default_store_path
from tofuplane.core.persistence.store import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    NotFoundError,
)


def _module(name: str = "network", **meta) -> Module:
    return Module(metadata=ObjectMeta(name=name, **meta), spec=ModuleSpec(source="git://x"))


class TestCreate:
    def test_assigns_server_fields(self, store, clock):
        expected = clock.now
        created = store.create(_module())
        assert created.metadata.uid
        assert created.metadata.generation == 1
        assert created.metadata.resource_version
        assert created.metadata.creation_timestamp == expected

    def test_generate_name(self, store):
        created = store.create(_module(name="", generate_name="network-"))
        assert created.name.startswith("network-")
        assert len(created.name) == len("network-") + 5

    def test_needs_a_name(self, store):
        with pytest.raises(InvalidError, match="needs a name"):
            store.create(_module(name=""))

    def test_duplicate_rejected(self, store):
        store.create(_module())
        with pytest.raises(AlreadyExistsError):
            store.create(_module())

    def test_status_kept(self, store):
        execution = Execution(metadata=ObjectMeta(name="e"))
        execution.status.phase = "Running"
        assert store.create(execution).status.phase == "Running"

    def test_returns_copies(self, store):
        created = store.create(_module())
        created.spec.source = "mutated"
        assert store.get(Module, "default", "network").spec.source == "git://x"


class TestUpdate:
    def test_spec_change_bumps_generation(self, store):
        current = store.create(_module())
        current.spec.version = "v2"
        updated = store.update(current)
        assert updated.metadata.generation == 2
        assert updated.metadata.resource_version != current.metadata.resource_version

    def test_metadata_only_change_keeps_generation(self, store):
        current = store.create(_module())
        current.metadata.labels["team"] = "net"
        assert store.update(current).metadata.generation == 1

    def test_update_preserves_status(self, store):
        current = store.create(_module())
        current.status.phase = "Succeeded"
        current = store.update_status(current)
        current.status.phase = "ignored"
        current.spec.version = "v2"
        assert store.update(current).status.phase == "Succeeded"

    def test_stale_version_conflicts(self, store):
        first = store.create(_module())
        stale = first.model_copy(deep=True)
        first.spec.version = "v2"
        store.update(first)
        stale.spec.version = "v3"
        with pytest.raises(ConflictError):
            store.update(stale)
        with pytest.raises(ConflictError):
            store.update_status(stale)

    def test_update_status_only_changes_status(self, store):
        current = store.create(_module())
        current.status.phase = "Running"
        current.spec.version = "ignored"
        updated = store.update_status(current)
        assert updated.status.phase == "Running"
        assert updated.spec.version == ""
        assert updated.metadata.generation == 1

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update(_module())


class TestDeleteAndList:
    def test_delete(self, store):
        store.create(_module())
        store.delete(Module, "default", "network")
        with pytest.raises(NotFoundError):
            store.get(Module, "default", "network")

    def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            store.delete(Module, "default", "network")

    def test_list_by_namespace(self, store):
        store.create(_module("a"))
        store.create(_module("b", namespace="other"))
        assert {m.name for m in store.list(Module)} == {"a", "b"}
        assert [m.name for m in store.list(Module, "other")] == ["b"]
        assert store.list(Execution) == []


class TestEvents:
    def test_listeners_see_every_mutation(self, store):
        events = []
        store.subscribe(lambda event, obj: events.append((event, obj.name)))

        created = store.create(_module())
        created.spec.version = "v2"
        store.update(created)
        store.delete(Module, "default", "network")

        assert events == [("added", "network"), ("modified", "network"), ("deleted", "network")]

    def test_failing_listener_does_not_break_writes(self, store):
        def _boom(event, obj):
            raise RuntimeError("listener bug")

        store.subscribe(_boom)
        assert store.create(_module()).name == "network"

    def test_add_does_not_notify(self, store):
        events = []
        store.subscribe(lambda event, obj: events.append(event))
        seeded = store.add(_module(uid="fixed-uid"))
        assert seeded.metadata.uid == "fixed-uid"
        assert events == []


class TestStateFile:
    def test_default_path(self, tmp_path: Path):
        assert default_store_path(tmp_path) == tmp_path / ".state" / "resources.json"

    def test_persists_across_instances(self, tmp_path: Path):
        path = tmp_path / ".state" / "resources.json"
        first = MemoryStore(path=path)
        created = first.create(_module())

        second = MemoryStore(path=path)
        loaded = second.get(Module, "default", "network")
        assert loaded.metadata.uid == created.metadata.uid
        assert loaded.metadata.creation_timestamp == created.metadata.creation_timestamp

        # versions keep increasing after a reload
        loaded.spec.version = "v2"
        updated = second.update(loaded)
        assert int(updated.metadata.resource_version) > int(created.metadata.resource_version)

    def test_file_is_wire_format(self, tmp_path: Path):
        path = tmp_path / "resources.json"
        MemoryStore(path=path).create(_module())
        data = json.loads(path.read_text())
        assert data["objects"][0]["kind"] == "TofuModule"
        assert "resourceVersion" in data["objects"][0]["metadata"]
        assert not list(tmp_path.glob(".resources_*.tmp"))

    def test_corrupt_file_starts_empty(self, tmp_path: Path):
        path = tmp_path / "resources.json"
        path.write_text("not json at all {{{")
        assert MemoryStore(path=path).list(Module) == []

"""Tests for state persistence."""

import json

import pytest

from cloudplane.resources.base import Resource
from cloudplane.state import (
    ResourceState,
    State,
    StateManager,
    StateNotFoundError,
    from_resource_state,
    to_resource_state,
)
from cloudplane.utils.errors import StateError


def entry(resource_id="latency"):
    return ResourceState(
        id=resource_id,
        type="AWS::NetworkMonitor::Monitor",
        physical_id=resource_id,
        properties={"MonitorName": resource_id, "AggregationPeriod": 60},
        tags={"env": "test"},
    )


class TestState:
    def test_add_and_remove(self):
        state = State(region="us-west-2")

        state.add_resource(entry())

        assert state.has_resource("latency")
        assert "updated_at" in state.get_resource("latency").metadata
        assert state.remove_resource("latency").id == "latency"
        assert state.remove_resource("latency") is None
        assert state.list_resources() == []


class TestStateManager:
    def test_load_missing(self, tmp_path):
        with pytest.raises(StateNotFoundError):
            StateManager(str(tmp_path / "state.json")).load()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / ".cloudplane" / "state.json"
        manager = StateManager(str(path))
        state = manager.initialize("us-west-2")
        state.add_resource(entry())

        manager.save(state)
        loaded = StateManager(str(path)).load()

        assert loaded.version == "1.0"
        assert loaded.region == "us-west-2"
        assert loaded.get_resource("latency").properties == {"MonitorName": "latency", "AggregationPeriod": 60}
        assert not path.with_suffix(".tmp").exists()

    def test_saved_file_is_json(self, tmp_path):
        path = tmp_path / "state.json"
        manager = StateManager(str(path))
        manager.initialize("eu-west-1")

        data = json.loads(path.read_text())

        assert data["region"] == "eu-west-1"
        assert data["resources"] == {}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateError):
            StateManager(str(path)).load()

    def test_invalid_schema(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"resources": []}))

        with pytest.raises(StateError):
            StateManager(str(path)).load()

    def test_load_or_initialize(self, tmp_path):
        manager = StateManager(str(tmp_path / "state.json"))

        created = manager.load_or_initialize("us-east-1")
        loaded = manager.load_or_initialize("ignored")

        assert created.region == loaded.region == "us-east-1"
        assert manager.exists()


class TestConversion:
    def test_resource_state_round_trip(self):
        resource = Resource(id="a", type="T", physical_id="p", properties={"x": 1}, tags={"k": "v"})

        restored = from_resource_state(to_resource_state(resource))

        assert restored == resource

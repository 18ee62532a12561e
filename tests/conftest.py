"""Shared fixtures for cloudplane tests."""

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError


def pytest_configure(config):
    """Keep library logging quiet during tests."""
    logging.basicConfig(level=logging.WARNING, force=True)


def client_error(code, message="error", operation="Operation"):
    """Build a botocore ClientError with the given code."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"RequestId": "req-123"},
        },
        operation,
    )


class FakeClock:
    """Monotonic clock that only moves when sleep is called."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep(monkeypatch):
    """Make waits in resource handlers return immediately."""
    clock = FakeClock()
    monkeypatch.setattr("cloudplane.waiter.time", SimpleNamespace(sleep=clock.sleep, monotonic=clock))
    return clock


@pytest.fixture
def client_manager():
    """Client manager returning one MagicMock client per service and region."""
    clients = {}

    def get_client(service_name, region=None):
        key = f"{service_name}:{region or 'us-west-2'}"
        if key not in clients:
            clients[key] = MagicMock(name=key)
        return clients[key]

    manager = MagicMock()
    manager.get_client.side_effect = get_client
    manager.region = "us-west-2"
    manager.get_region.return_value = "us-west-2"
    manager.clients = clients
    return manager

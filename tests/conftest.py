"""Shared test fixtures."""

from __future__ import annotations

import pytest

from tests.fakes import FakeIcmpNetwork, RecordingNotifier
from vigil.targets.registry import SSHServer


@pytest.fixture
def network() -> FakeIcmpNetwork:
    return FakeIcmpNetwork()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def password_server() -> SSHServer:
    return SSHServer(name="web1", server="web1.example.com", user="monitor", password="secret")

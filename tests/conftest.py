"""Shared fixtures."""

import pytest

from fakes import FakeClient, FakeN8NServer, FakeRunner
from n8n_manager.config import N8NConfig


@pytest.fixture
def server():
    return FakeN8NServer()


@pytest.fixture
def client(server):
    return FakeClient(server)


@pytest.fixture
def runner(server):
    return FakeRunner(server)


@pytest.fixture
def make_config(tmp_path):
    """Build an N8NConfig for a single ``default`` profile."""

    def _make(**values):
        profile = {
            "base_url": "http://localhost:5678",
            "api_key": "test-key",
            "local_backup_path": str(tmp_path / "backup"),
            "credentials": "disabled",
        }
        profile.update(values)
        return N8NConfig(config={"default": profile})

    return _make

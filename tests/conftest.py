"""pytest configuration and fixtures."""

import os

import pytest

from fakes import FakeHub

ENV_PREFIXES = ("PEERMESH_", "TURN_")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment variables out of PeerConfig."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def hub():
    return FakeHub()

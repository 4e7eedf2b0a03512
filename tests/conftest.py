"""Shared WHEP client fixtures."""

import os

import httpx
import pytest

from whep_client import WHEPClient, WHEPClientConfig

from fakes import ENDPOINT, FakePeerConnection, SleepRecorder


@pytest.fixture(autouse=True)
def clean_whep_env(monkeypatch):
    """Keep the developer's WHEP_* settings (and .env) out of the tests."""
    for name in list(os.environ):
        if name.startswith("WHEP_"):
            monkeypatch.delenv(name)


@pytest.fixture
def peer_connections():
    return []


@pytest.fixture
def pc_factory(peer_connections):
    def factory(configuration=None):
        pc = FakePeerConnection(configuration=configuration)
        peer_connections.append(pc)
        return pc

    return factory


@pytest.fixture
def make_client(pc_factory):
    def make(server, config=None, sleep=None, endpoint=ENDPOINT, factory=None):
        return WHEPClient(
            endpoint,
            config or WHEPClientConfig(),
            transport=httpx.MockTransport(server),
            sleep=sleep or SleepRecorder(),
            peer_connection_factory=factory or pc_factory,
        )

    return make

"""Shared fixtures for shellyrpc tests."""

import pytest

from shellyrpc.client import make_id_generator

from tests.mocks import FakeManager, MockDevice, echo_handler


@pytest.fixture
def ids():
    """Deterministic correlation ids"""
    return make_id_generator(seed=1234)


@pytest.fixture
def device():
    """Device answering every call with {"ok": true}"""
    return MockDevice(echo_handler({"ok": True}))


@pytest.fixture
def manager(device):
    return FakeManager(device)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep user config and SHELLYRPC_* variables out of the tests."""
    for name in ("CONFIG", "ADAPTER", "SERVICE_UUID", "DATA_UUID", "TX_CTRL_UUID",
                 "RX_CTRL_UUID", "CONNECT_TIMEOUT", "TIMEOUT", "SOURCE"):
        monkeypatch.delenv(f"SHELLYRPC_{name}", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))

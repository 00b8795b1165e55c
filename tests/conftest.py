"""Shared fixtures for MindChain tests."""

from __future__ import annotations

import pytest

from mindchain.signing import LocalAccountSigner
from mindchain.store import MindchainStore

KEY_A = "0x" + "11" * 32
KEY_B = "0x" + "22" * 32


class FailingSigner:
    """Signer whose wallet refuses every request."""

    def __init__(self, address: str, exc: Exception):
        self.address = address
        self._exc = exc

    async def sign_message(self, message: str) -> bytes:
        raise self._exc


@pytest.fixture
def tmp_db(tmp_path):
    """Temporary SQLite database path."""
    return tmp_path / "test_mindchain.db"


@pytest.fixture
def store(tmp_db):
    """Fresh MindchainStore for each test."""
    s = MindchainStore(db_path=tmp_db)
    yield s
    s.close()


@pytest.fixture
def signer():
    return LocalAccountSigner.from_key(KEY_A)


@pytest.fixture
def signer_b():
    return LocalAccountSigner.from_key(KEY_B)


@pytest.fixture
def sample_body():
    """A workflows.execute request body with nested objects and arrays."""
    return {
        "jsonrpc": "2.0",
        "id": "req-1",
        "method": "workflows.execute",
        "params": {
            "input": {"prompt": "classify", "pixels": [0, 12, 255, 7], "meta": {"z": True, "a": None}},
            "workflow": {"workflowID": "wf-123"},
        },
    }

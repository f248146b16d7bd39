"""
Shared fixtures for the gateway tests.

Every test writes its audit log to a temporary directory, and gets a
gateway wallet configured so payments can be verified.
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from evice.core.config import settings
from evice.main import create_app
from evice.services.asset_store import MockAssetStore, RoutingAssetStore
from evice.x402.ledger import BudgetLedger
from evice.x402.store import MemoryLedgerStore
from evice.x402.verifier import ChainVerifier

from chain_fixtures import RECIPIENT


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path, monkeypatch):
    """Keep audit events out of the working directory."""
    path = tmp_path / "x402_audit.jsonl"
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(path))
    return path


@pytest.fixture(autouse=True)
def gateway_settings(monkeypatch):
    monkeypatch.setattr(settings, "X402_ENABLED", True)
    monkeypatch.setattr(settings, "MY_EVM_WALLET_ADDRESS", RECIPIENT)
    monkeypatch.setattr(settings, "X402_STRICT_MEMO_MATCH", True)
    return settings


@pytest.fixture
def store():
    return MemoryLedgerStore()


@pytest.fixture
def ledger(store):
    return BudgetLedger(store)


@pytest.fixture
def verifier():
    return ChainVerifier("http://rpc.test", timeout=2.0)


@pytest.fixture
def app(store, verifier):
    return create_app(
        store=store,
        verifier=verifier,
        asset_store=RoutingAssetStore(MockAssetStore())
    )


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def chain(verifier):
    """
    Patch the RPC lookup of the test verifier.

    Set `chain.return_value` to the transaction dict (or None for "not found").
    """
    with patch.object(verifier, "_get_transaction_from_rpc") as mock_rpc:
        mock_rpc.return_value = None
        yield mock_rpc

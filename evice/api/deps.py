from fastapi import Request

from evice.services.asset_store import AssetStore
from evice.x402.ledger import BudgetLedger
from evice.x402.verifier import ChainVerifier


def get_ledger(request: Request) -> BudgetLedger:
    """Budget ledger created at startup (see evice.main.create_app)."""
    return request.app.state.ledger


def get_verifier(request: Request) -> ChainVerifier:
    return request.app.state.verifier


def get_asset_store(request: Request) -> AssetStore:
    return request.app.state.asset_store

# evice/main.py
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from evice import __version__
from evice.core.config import settings
from evice.api.endpoints import budget, context
from evice.services.asset_store import AssetStore, create_asset_store
from evice.x402.ledger import BudgetLedger
from evice.x402.middleware import X402Middleware
from evice.x402.store import LedgerStore, create_ledger_store
from evice.x402.verifier import ChainVerifier
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    store: Optional[LedgerStore] = None,
    verifier: Optional[ChainVerifier] = None,
    asset_store: Optional[AssetStore] = None
) -> FastAPI:
    """
    Build the gateway application.

    Collaborators default to the ones selected by configuration; tests pass
    their own store, verifier and asset store.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        openapi_url=f"{settings.API_STR}/openapi.json"
    )

    app.state.ledger = BudgetLedger(
        store or create_ledger_store(settings),
        reference_ttl_seconds=settings.X402_REFERENCE_TTL_SECONDS
    )
    app.state.verifier = verifier or ChainVerifier(
        str(settings.NEUROWEB_RPC),
        timeout=settings.X402_RPC_TIMEOUT_SECONDS,
        strict_memo=settings.X402_STRICT_MEMO_MATCH
    )
    app.state.asset_store = asset_store or create_asset_store(settings)

    # Middleware added last runs first: CORS must wrap the payment gate so
    # 402/401 responses still carry CORS headers.
    app.add_middleware(X402Middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Type", "Authorization", "x402-Payer-Address"],
    )

    app.include_router(budget.router, prefix=settings.API_STR, tags=["budget"])
    app.include_router(context.router, prefix=settings.API_STR, tags=["context"])

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}", "version": __version__}

    return app


app = create_app()

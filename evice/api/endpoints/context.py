from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional
import logging

from evice.api.deps import get_asset_store
from evice.api.models.context import (
    AgentTool,
    AssetMetadata,
    ContextResponse,
    PremiumDataResponse,
)
from evice.core.config import settings
from evice.services.asset_store import AssetStore, AssetStoreError
from evice.x402.middleware import get_payment_method
from evice.x402.pricing import list_agent_tools

logger = logging.getLogger(__name__)

router = APIRouter()


def get_knowledge_assets() -> Dict[str, str]:
    """Map of document id to knowledge asset UAL."""
    return {
        "tokenomics": settings.TOKENOMICS_UAL,
        "roadmap": settings.ROADMAP_UAL,
    }


def _payment_method_label(request: Request) -> str:
    method = get_payment_method(request)
    return method.value if method else "unknown"


@router.get("/agent-tools", response_model=List[AgentTool])
async def agent_tools() -> Any:
    """List the paid tools and their per-call price."""
    return list_agent_tools()


@router.get("/public")
async def public_data() -> Dict[str, str]:
    """Free endpoint, no payment required."""
    return {"message": "Free data for you all!"}


@router.get("/premium-data", response_model=PremiumDataResponse)
async def premium_data(request: Request) -> Any:
    """Paid endpoint (x402-protected)."""
    return PremiumDataResponse(
        message="This is your premium data.",
        paymentMethod=_payment_method_label(request),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/get-context", response_model=ContextResponse)
async def get_context(
    request: Request,
    docId: Optional[str] = Query(None, description="Document id, e.g. tokenomics or roadmap"),
    asset_store: AssetStore = Depends(get_asset_store)
) -> Any:
    """
    Fetch a verified knowledge asset (x402-protected).

    Raises:
        404: Unknown document id
        500: Asset store unreachable or asset empty
    """
    ual = get_knowledge_assets().get(docId or "")
    if not ual:
        return JSONResponse(status_code=404, content={"error": "Asset UAL not defined for this topic."})

    logger.info(f"Request for: {docId} (UAL: {ual})")

    try:
        asset = asset_store.get(ual)
    except AssetStoreError as e:
        logger.error(f"Asset store error for {ual}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to fetch from DKG Node. Ensure node is running.",
                "details": str(e)
            }
        )

    return ContextResponse(
        context=asset.text,
        metadata=AssetMetadata(
            source=asset.source,
            ual=asset.ual,
            publisher=asset.publisher,
            verifiability=asset.verifiability,
        ),
        paymentMethod=_payment_method_label(request),
    )

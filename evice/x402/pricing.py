# evice/x402/pricing.py
"""
Prices for x402-protected endpoints.

All prices are in the chain's native major unit (NEURO). The agent tool
catalog advertises the same prices to clients that browse /api/agent-tools.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

# (method, path) -> price in NEURO
PROTECTED_ENDPOINTS: Dict[tuple, Decimal] = {
    ("GET", "/api/premium-data"): Decimal("0.01"),
    ("GET", "/api/get-context"): Decimal("0.005"),
}

AGENT_TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_tokenomics",
        "description": "Retrieve verified tokenomics data",
        "price_neuro": Decimal("0.005"),
        "endpoint": "/api/get-context?docId=tokenomics",
    },
    {
        "name": "get_roadmap",
        "description": "Retrieve verified project roadmap",
        "price_neuro": Decimal("0.005"),
        "endpoint": "/api/get-context?docId=roadmap",
    },
]


def get_endpoint_price(method: str, path: str) -> Optional[Decimal]:
    """
    Look up the price of an endpoint.

    Trailing slashes are ignored.

    Returns:
        Price in NEURO, or None if the endpoint is free
    """
    normalized = path.rstrip("/") or "/"
    return PROTECTED_ENDPOINTS.get((method.upper(), normalized))


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    return get_endpoint_price(method, path) is not None


def list_agent_tools() -> List[Dict[str, Any]]:
    """Agent tool catalog in the shape served to UI clients."""
    return [
        {
            "id": tool["name"].replace("get_", "", 1),
            "description": tool["description"],
            "endpoint": tool["endpoint"],
            "cost": float(tool["price_neuro"]),
        }
        for tool in AGENT_TOOLS
    ]

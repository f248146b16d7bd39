from pydantic import BaseModel, Field
from typing import Optional


class AgentTool(BaseModel):
    """A paid tool advertised to agent UIs."""
    id: str
    description: str
    endpoint: str
    cost: float = Field(..., description="Price per call in NEURO")


class AssetMetadata(BaseModel):
    source: str
    ual: str
    publisher: Optional[str] = None
    verifiability: str


class ContextResponse(BaseModel):
    """Response model for a paid knowledge asset lookup."""
    context: str = Field(..., description="Public text of the knowledge asset")
    metadata: AssetMetadata
    paymentMethod: str = Field(..., description="How the request was paid for (budget, onetime)")


class PremiumDataResponse(BaseModel):
    message: str
    paymentMethod: str
    timestamp: str

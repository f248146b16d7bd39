from typing import Optional
from pydantic import BaseModel, Field


class Invoice(BaseModel):
    """
    Body of an HTTP 402 response.

    Tells the client what to pay and how to prove it: send `amount` of
    `currency` to `recipient` with `reference` hex-encoded in the
    transaction data, then retry with `Authorization: x402 <txHash>` and
    `?reference=<reference>`.
    """
    protocol: str = Field(..., description="Payment protocol identifier")
    recipient: str = Field(..., description="Wallet address that must receive the payment")
    amount: float = Field(..., description="Required amount in the chain's native unit")
    currency: str = Field(..., description="Currency label")
    reference: str = Field(..., description="Single-use reference to embed in the transaction data")
    instruction: str = Field(..., description="Human-readable payment instruction")


class PaymentErrorResponse(BaseModel):
    """Body of a 401/402 response when a payment proof is rejected."""
    error: str
    reason: Optional[str] = None

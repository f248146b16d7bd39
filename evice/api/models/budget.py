from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


class CurrentBudgetResponse(BaseModel):
    """Response model for the current budget of a payer."""
    currentBudget: str = Field(..., description="Remaining budget in NEURO, as a decimal string", example="0.015")


class BudgetDepositRequest(BaseModel):
    """
    Request model for confirming an on-chain budget deposit.

    Fields are optional at the schema level so that incomplete requests get
    a 400 with a readable error instead of a validation error.
    """
    txHash: Optional[str] = Field(None, description="Hash of the deposit transaction")
    reference: Optional[str] = Field(None, description="Reference embedded in the transaction data", example="DEPOSIT-6f1c...")
    payerAddress: Optional[str] = Field(None, description="Address the deposit was sent from")
    amount: Optional[Decimal] = Field(None, description="Amount deposited in NEURO", example=5)


class BudgetDepositResponse(BaseModel):
    """Response model for a confirmed deposit."""
    success: bool = True
    newBudget: float = Field(..., description="Budget after crediting the deposit")

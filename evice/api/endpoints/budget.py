from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from typing import Any, Optional
import logging

from evice.api.deps import get_ledger, get_verifier
from evice.api.models.budget import (
    CurrentBudgetResponse,
    BudgetDepositRequest,
    BudgetDepositResponse,
)
from evice.core.config import settings
from evice.x402 import audit
from evice.x402.ledger import BudgetLedger, LedgerConflictError, format_amount
from evice.x402.verifier import ChainVerifier

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/get-current-budget", response_model=CurrentBudgetResponse)
async def get_current_budget(
    payerAddress: Optional[str] = Query(None, description="EVM address of the payer"),
    ledger: BudgetLedger = Depends(get_ledger)
) -> Any:
    """
    Get the remaining pre-funded budget of a payer.

    Addresses are case-insensitive. A payer with no deposits has a budget of "0".
    """
    if not payerAddress:
        return JSONResponse(status_code=400, content={"error": "payerAddress required"})

    budget = ledger.get_budget(payerAddress)
    return CurrentBudgetResponse(currentBudget=format_amount(budget))


@router.post("/confirm-budget-deposit", response_model=BudgetDepositResponse)
async def confirm_budget_deposit(
    deposit: BudgetDepositRequest,
    ledger: BudgetLedger = Depends(get_ledger),
    verifier: ChainVerifier = Depends(get_verifier)
) -> Any:
    """
    Credit a payer's budget with a verified on-chain deposit.

    The deposit transaction must send at least `amount` to the gateway wallet,
    carry `reference` in its data field, and originate from `payerAddress`.
    The full amount received is credited. Each reference can be used once.

    Raises:
        400: Incomplete request or failed verification
        401: Reference already used
    """
    if not (deposit.txHash and deposit.reference and deposit.payerAddress and deposit.amount):
        return JSONResponse(status_code=400, content={"error": "Incomplete data"})

    recipient = settings.MY_EVM_WALLET_ADDRESS
    if not recipient:
        logger.error("Deposit rejected: MY_EVM_WALLET_ADDRESS not configured")
        return JSONResponse(status_code=503, content={"error": "Payment recipient not configured"})

    if ledger.is_reference_spent(deposit.reference):
        audit.log_replay_detected(deposit.reference, deposit.txHash, deposit.payerAddress)
        return JSONResponse(status_code=401, content={"error": "Tx already used"})

    verification = await verifier.verify_transaction(
        deposit.txHash, deposit.reference, deposit.amount, recipient
    )

    if not verification.success:
        logger.warning(f"Deposit verification failed for {deposit.txHash}: {verification.message}")
        audit.log_payment_failed(
            deposit.txHash, deposit.reference, verification.error.value,
            verification.message, deposit.payerAddress
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Deposit verification failed", "details": verification.message}
        )

    if (verification.sender or "").lower() != deposit.payerAddress.lower():
        logger.warning(f"Deposit sender mismatch: {verification.sender} != {deposit.payerAddress}")
        return JSONResponse(
            status_code=400,
            content={
                "error": "Deposit verification failed",
                "details": f"Sender mismatch. Expected: {deposit.payerAddress}, got: {verification.sender}"
            }
        )

    # Claim the reference before crediting so a concurrent replay cannot credit twice
    if not ledger.claim_reference(deposit.reference):
        audit.log_replay_detected(deposit.reference, deposit.txHash, deposit.payerAddress)
        return JSONResponse(status_code=401, content={"error": "Tx already used"})

    try:
        new_budget = ledger.credit(deposit.payerAddress, verification.amount_received)
    except LedgerConflictError as e:
        logger.error(f"Deposit {deposit.txHash} verified but could not be credited: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})

    logger.info(f"Deposit success: {verification.amount_received} from {deposit.payerAddress}")
    audit.log_deposit_confirmed(
        deposit.payerAddress, deposit.txHash, deposit.reference,
        format_amount(verification.amount_received), format_amount(new_budget)
    )
    return BudgetDepositResponse(success=True, newBudget=float(new_budget))

# evice/x402/gates.py
"""
Gate pipeline deciding whether a protected request is paid for.

Each gate returns a GateResult:
- AUTHORIZED: the request is paid for, carrying the PaymentMethod used
- NOT_APPLICABLE: this gate cannot authorize, try the next one
- DENIED: stop and answer with the gate's status code and body

Gates run in order via run_gate_pipeline. The budget gate comes first
(cheap, local); the payment gate either accepts an on-chain proof or issues
a 402 invoice, so it never falls through.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from evice.api.models.payment import Invoice, PaymentErrorResponse
from evice.x402 import audit
from evice.x402.ledger import BudgetLedger, LedgerConflictError, format_amount
from evice.x402.verifier import ChainVerifier

logger = logging.getLogger(__name__)

PAYER_ADDRESS_HEADER = "x402-Payer-Address"
AUTHORIZATION_SCHEME = "x402"
REFERENCE_QUERY_PARAM = "reference"

DEFAULT_PROTOCOL = "x402-neuroweb"
DEFAULT_CURRENCY = "NEURO"
REPLAY_ERROR = "Payment replay detected"


class GateOutcome(Enum):
    AUTHORIZED = "authorized"
    NOT_APPLICABLE = "not_applicable"
    DENIED = "denied"


class PaymentMethod(Enum):
    """How an authorized request was paid for."""
    BUDGET = "budget"
    ONETIME = "onetime"


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    payment_method: Optional[PaymentMethod] = None
    status_code: Optional[int] = None
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def authorized(cls, method: PaymentMethod) -> "GateResult":
        return cls(GateOutcome.AUTHORIZED, payment_method=method)

    @classmethod
    def not_applicable(cls) -> "GateResult":
        return cls(GateOutcome.NOT_APPLICABLE)

    @classmethod
    def denied(cls, status_code: int, body: Dict[str, Any]) -> "GateResult":
        return cls(GateOutcome.DENIED, status_code=status_code, body=body)

    @property
    def is_authorized(self) -> bool:
        return self.outcome is GateOutcome.AUTHORIZED


@dataclass(frozen=True)
class PaymentRequest:
    """The payment-relevant parts of an incoming HTTP request."""
    payer_address: Optional[str] = None
    tx_hash: Optional[str] = None
    reference: Optional[str] = None
    path: str = ""

    @classmethod
    def from_http(
        cls,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
        path: str = ""
    ) -> "PaymentRequest":
        """Extract payer, proof and reference from headers and query string."""
        payer_address = (headers.get(PAYER_ADDRESS_HEADER) or "").strip() or None
        reference = (query_params.get(REFERENCE_QUERY_PARAM) or "").strip() or None
        return cls(
            payer_address=payer_address,
            tx_hash=parse_authorization_header(headers.get("Authorization")),
            reference=reference,
            path=path
        )


def parse_authorization_header(header_value: Optional[str]) -> Optional[str]:
    """
    Extract the transaction hash from an `x402 <txHash>` credential.

    Returns:
        The transaction hash, or None for a missing or foreign credential
    """
    if not header_value:
        return None

    parts = header_value.strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != AUTHORIZATION_SCHEME:
        return None

    tx_hash = parts[1].strip()
    return tx_hash or None


def create_invoice(
    amount: Decimal,
    recipient: str,
    protocol: str = DEFAULT_PROTOCOL,
    currency: str = DEFAULT_CURRENCY
) -> Invoice:
    """Create a 402 invoice with a fresh single-use reference."""
    return Invoice(
        protocol=protocol,
        recipient=recipient,
        amount=float(amount),
        currency=currency,
        reference=str(uuid.uuid4()),
        instruction=f"Send {currency} to recipient with reference as HEX data."
    )


class BudgetGate:
    """
    Pays for a request from the caller's pre-funded budget.

    Insufficient budget is not an error: the gate answers NOT_APPLICABLE so
    the payment gate can ask for an on-chain payment instead.
    """

    def __init__(self, ledger: BudgetLedger):
        self.ledger = ledger

    async def check(self, request: PaymentRequest, amount: Decimal) -> GateResult:
        if not request.payer_address:
            return GateResult.not_applicable()

        try:
            remaining = self.ledger.debit_if_sufficient(request.payer_address, amount)
        except LedgerConflictError as e:
            logger.warning(f"x402: {e}")
            return GateResult.not_applicable()

        if remaining is None:
            logger.info(f"x402: Budget insufficient for {request.payer_address}")
            return GateResult.not_applicable()

        audit.log_budget_debited(request.payer_address, format_amount(amount), format_amount(remaining))
        return GateResult.authorized(PaymentMethod.BUDGET)


class PaymentGate:
    """
    Pays for a request with a one-time on-chain payment.

    With a proof (Authorization header plus reference) the transaction is
    verified and the reference claimed; without one, a 402 invoice is issued.
    """

    def __init__(
        self,
        ledger: BudgetLedger,
        verifier: ChainVerifier,
        recipient_wallet: str,
        protocol: str = DEFAULT_PROTOCOL,
        currency: str = DEFAULT_CURRENCY
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.recipient_wallet = recipient_wallet
        self.protocol = protocol
        self.currency = currency

    def _replay(self, request: PaymentRequest) -> GateResult:
        logger.warning(f"x402: Replay of reference {request.reference} rejected")
        audit.log_replay_detected(request.reference, request.tx_hash, request.payer_address)
        return GateResult.denied(401, PaymentErrorResponse(error=REPLAY_ERROR).model_dump(exclude_none=True))

    async def check(self, request: PaymentRequest, amount: Decimal) -> GateResult:
        if not (request.tx_hash and request.reference):
            invoice = create_invoice(amount, self.recipient_wallet, self.protocol, self.currency)
            logger.info(f"x402: No payment proof, returning 402 for {amount} {self.currency}")
            audit.log_payment_required_sent(
                format_amount(amount), self.currency, invoice.reference, request.path, request.payer_address
            )
            return GateResult.denied(402, invoice.model_dump())

        if self.ledger.is_reference_spent(request.reference):
            return self._replay(request)

        result = await self.verifier.verify_transaction(
            request.tx_hash, request.reference, amount, self.recipient_wallet
        )

        if not result.success:
            logger.warning(f"x402: Payment verification failed for {request.tx_hash}: {result.message}")
            audit.log_payment_failed(
                request.tx_hash, request.reference, result.error.value, result.message, request.payer_address
            )
            return GateResult.denied(
                402,
                PaymentErrorResponse(
                    error=f"Verification failed: {result.message}",
                    reason=result.error.value
                ).model_dump()
            )

        # A concurrent request may have claimed the reference while we verified
        if not self.ledger.claim_reference(request.reference):
            return self._replay(request)

        audit.log_payment_verified(
            request.tx_hash, request.reference, result.sender, format_amount(result.amount_received)
        )
        return GateResult.authorized(PaymentMethod.ONETIME)


async def run_gate_pipeline(
    gates: Sequence[Any],
    request: PaymentRequest,
    amount: Decimal
) -> GateResult:
    """
    Run gates in order until one authorizes or denies the request.

    Returns NOT_APPLICABLE only if every gate did.
    """
    for gate in gates:
        result = await gate.check(request, amount)
        if result.outcome is not GateOutcome.NOT_APPLICABLE:
            return result
    return GateResult.not_applicable()

# evice/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Checks if payment is required (X402_ENABLED)
3. Tries the caller's pre-funded budget (x402-Payer-Address header)
4. Otherwise verifies an on-chain payment (Authorization: x402 <txHash>
   plus ?reference=) against the NeuroWeb RPC
5. Returns 402 with an invoice, or 401 on replay, when not paid for

The authorizing PaymentMethod is stored on request.state.payment_method so
handlers can report how the request was paid.
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from evice.core.config import settings
from evice.x402.gates import (
    BudgetGate,
    PaymentGate,
    PaymentMethod,
    PaymentRequest,
    run_gate_pipeline,
)
from evice.x402.ledger import BudgetLedger
from evice.x402.pricing import get_endpoint_price
from evice.x402.verifier import ChainVerifier

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_payment_method(request: Request) -> Optional[PaymentMethod]:
    """How the current request was paid for, if it went through the gates."""
    return getattr(request.state, "payment_method", None)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate middleware for FastAPI.

    When X402_ENABLED=true, this middleware:
    - Checks if the endpoint has a price
    - Runs the budget gate, then the on-chain payment gate
    - Forwards paid requests to the handler
    - Returns the gate's 401/402 response otherwise

    When X402_ENABLED=false, all requests pass through unchanged.

    The ledger and verifier default to the instances on app.state (set up
    by create_app) and can be injected directly for testing.
    """

    def __init__(
        self,
        app,
        ledger: Optional[BudgetLedger] = None,
        verifier: Optional[ChainVerifier] = None
    ):
        super().__init__(app)
        self._ledger = ledger
        self._verifier = verifier

    def _get_ledger(self, request: Request) -> BudgetLedger:
        return self._ledger or request.app.state.ledger

    def _get_verifier(self, request: Request) -> ChainVerifier:
        return self._verifier or request.app.state.verifier

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        # Skip if x402 is disabled
        if not settings.X402_ENABLED:
            return await call_next(request)

        price = get_endpoint_price(request.method, request.url.path)
        if price is None:
            return await call_next(request)

        recipient = settings.MY_EVM_WALLET_ADDRESS
        if not recipient:
            logger.error("x402: MY_EVM_WALLET_ADDRESS not configured - cannot accept payments")
            return JSONResponse(
                status_code=503,
                content={"error": "Service temporarily unavailable", "detail": "Payment recipient not configured"}
            )

        logger.info(
            f"x402: Processing protected request from {get_client_ip(request)}: "
            f"{request.method} {request.url.path} ({price} {settings.X402_CURRENCY})"
        )

        ledger = self._get_ledger(request)
        gates = [
            BudgetGate(ledger),
            PaymentGate(
                ledger,
                self._get_verifier(request),
                recipient,
                protocol=settings.X402_PROTOCOL,
                currency=settings.X402_CURRENCY
            ),
        ]
        payment_request = PaymentRequest.from_http(
            request.headers, request.query_params, request.url.path
        )

        result = await run_gate_pipeline(gates, payment_request, price)

        if not result.is_authorized:
            return JSONResponse(status_code=result.status_code or 402, content=result.body)

        logger.info(f"x402: Request authorized via {result.payment_method.value}")
        request.state.payment_method = result.payment_method
        return await call_next(request)

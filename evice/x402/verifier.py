# evice/x402/verifier.py
"""
On-chain payment verification for the x402 NeuroWeb scheme.

A client pays by sending native NEURO to the recipient wallet with the
payment reference embedded (UTF-8, hex encoded) in the transaction's data
field. This module fetches that transaction over JSON-RPC and checks:
1. The transaction exists
2. It was sent to the expected recipient
3. Its data field carries the reference
4. Its value covers the required amount

Verification never raises: every failure is reported as a
VerificationResult so callers can always answer the HTTP request.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

# Conversion constant
WEI_PER_NEURO = Decimal(10) ** 18


class VerificationError(Enum):
    """Reasons a transaction can fail verification."""
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    WRONG_RECIPIENT = "wrong_recipient"
    REFERENCE_MISMATCH = "reference_mismatch"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    RPC_UNAVAILABLE = "rpc_unavailable"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a single transaction verification."""
    success: bool
    sender: Optional[str] = None
    amount_received: Optional[Decimal] = None
    error: Optional[VerificationError] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, sender: str, amount_received: Decimal) -> "VerificationResult":
        return cls(success=True, sender=sender, amount_received=amount_received)

    @classmethod
    def fail(cls, error: VerificationError, message: str) -> "VerificationResult":
        return cls(success=False, error=error, message=message)


class RpcError(Exception):
    """Raised when the JSON-RPC endpoint cannot answer."""


def wei_to_neuro(wei: int) -> Decimal:
    """Convert wei to NEURO."""
    return Decimal(wei) / WEI_PER_NEURO


def encode_reference(reference: str) -> str:
    """Hex encoding of a reference as embedded by clients (no 0x prefix)."""
    return reference.encode("utf-8").hex()


def strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value


def reference_matches(tx_data: Optional[str], reference: str, strict: bool = True) -> bool:
    """
    Check whether transaction data carries the reference.

    Strict mode requires the data to be exactly the encoded reference;
    otherwise the encoded reference may appear anywhere in the data.
    """
    data = strip_hex_prefix(tx_data or "").lower()
    expected = encode_reference(reference)
    if strict:
        return data == expected
    return expected in data


class ChainVerifier:
    """
    Verifies payments against a JSON-RPC endpoint.

    The RPC call is blocking, so it runs on a worker thread and is bounded
    by `timeout` seconds.
    """

    def __init__(self, rpc_url: str, timeout: float = 10.0, strict_memo: bool = True):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.strict_memo = strict_memo

    def _get_transaction_from_rpc(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a transaction by hash.

        Returns:
            The transaction object, or None if the node does not know it

        Raises:
            RpcError: If the RPC call fails
        """
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "method": "eth_getTransactionByHash",
                    "params": [tx_hash],
                    "id": 1
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (RequestException, ValueError) as e:
            raise RpcError(str(e)) from e

        if "error" in result:
            raise RpcError(f"RPC error: {result['error']}")

        if "result" not in result:
            raise RpcError("Invalid RPC response: missing 'result' field")

        return result["result"]

    async def fetch_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Async, time-bounded wrapper around the RPC lookup."""
        try:
            return await asyncio.wait_for(
                run_in_threadpool(self._get_transaction_from_rpc, tx_hash),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise RpcError(f"RPC request timed out after {self.timeout}s") from e

    async def verify_transaction(
        self,
        tx_hash: str,
        reference: str,
        required_amount: Decimal,
        recipient_address: str
    ) -> VerificationResult:
        """
        Verify that `tx_hash` pays `required_amount` to `recipient_address`
        with `reference` in its data field.

        Returns:
            VerificationResult carrying the sender and the full amount received
            on success, or the failure kind and a message
        """
        try:
            tx = await self.fetch_transaction(tx_hash)
        except RpcError as e:
            logger.error(f"x402: Transaction lookup failed for {tx_hash}: {e}")
            return VerificationResult.fail(
                VerificationError.RPC_UNAVAILABLE,
                f"Could not reach blockchain RPC: {e}"
            )

        if not tx:
            return VerificationResult.fail(
                VerificationError.TRANSACTION_NOT_FOUND,
                "Transaction not found on NeuroWeb."
            )

        actual_recipient = tx.get("to")
        if not actual_recipient or actual_recipient.lower() != recipient_address.lower():
            return VerificationResult.fail(
                VerificationError.WRONG_RECIPIENT,
                f"Wrong recipient. Expected: {recipient_address}, got: {actual_recipient}"
            )

        if not reference_matches(tx.get("input"), reference, strict=self.strict_memo):
            return VerificationResult.fail(
                VerificationError.REFERENCE_MISMATCH,
                "Reference/memo does not match the transaction data."
            )

        try:
            amount_received = wei_to_neuro(int(tx.get("value") or "0x0", 16))
        except (TypeError, ValueError):
            return VerificationResult.fail(
                VerificationError.RPC_UNAVAILABLE,
                f"Malformed transaction value: {tx.get('value')!r}"
            )

        if amount_received < Decimal(str(required_amount)):
            return VerificationResult.fail(
                VerificationError.INSUFFICIENT_AMOUNT,
                f"Insufficient amount. Received: {amount_received}, required: {required_amount}"
            )

        logger.info(f"x402: Verified tx {tx_hash} from {tx.get('from')} for {amount_received} NEURO")
        return VerificationResult.ok(sender=tx.get("from"), amount_received=amount_received)

# evice/x402/ledger.py
"""
Budget ledger for x402 payments.

Balances are decimal amounts in the chain's major unit (NEURO), stored as
strings under budget_<address>. Spent references are stored under
ref_<reference> with a bounded TTL.

Debits and credits use a compare-and-swap loop on the stored balance, and
references are claimed with insert-if-absent, so concurrent requests can
neither overspend a budget nor reuse a reference.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from evice.x402.store import LedgerStore

logger = logging.getLogger(__name__)

BUDGET_KEY_PREFIX = "budget_"
REFERENCE_KEY_PREFIX = "ref_"
SPENT_MARKER = "used"
DEFAULT_REFERENCE_TTL_SECONDS = 3600
MAX_CAS_ATTEMPTS = 10


class LedgerConflictError(Exception):
    """Raised when a balance update keeps losing compare-and-swap races."""


def normalize_address(address: str) -> str:
    """Addresses are case-insensitive; budgets are keyed by the lowercase form."""
    return address.strip().lower()


def budget_key(address: str) -> str:
    return f"{BUDGET_KEY_PREFIX}{normalize_address(address)}"


def reference_key(reference: str) -> str:
    return f"{REFERENCE_KEY_PREFIX}{reference}"


def parse_amount(raw: Optional[str]) -> Decimal:
    """Parse a stored balance. Absent or corrupt values read as zero."""
    if raw is None:
        return Decimal("0")
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        logger.warning(f"x402: Ignoring unparseable ledger value: {raw!r}")
        return Decimal("0")


def format_amount(amount: Decimal) -> str:
    """Render a balance without exponent notation or trailing zeros."""
    text = format(amount.normalize(), "f")
    return text if text != "-0" else "0"


class BudgetLedger:
    """Typed budget and reference operations on top of a LedgerStore."""

    def __init__(
        self,
        store: LedgerStore,
        reference_ttl_seconds: int = DEFAULT_REFERENCE_TTL_SECONDS
    ):
        self.store = store
        self.reference_ttl_seconds = reference_ttl_seconds

    def get_budget(self, address: str) -> Decimal:
        """Current balance for an address (zero when there is no record)."""
        return parse_amount(self.store.get(budget_key(address)))

    def debit_if_sufficient(self, address: str, amount: Decimal) -> Optional[Decimal]:
        """
        Atomically subtract `amount` if the balance covers it.

        Returns:
            The new balance, or None when the balance is insufficient

        Raises:
            LedgerConflictError: If the balance kept changing underneath us
        """
        key = budget_key(address)
        for _ in range(MAX_CAS_ATTEMPTS):
            raw = self.store.get(key)
            current = parse_amount(raw)
            if current < amount:
                return None

            new_balance = current - amount
            if self.store.compare_and_set(key, raw, format_amount(new_balance)):
                logger.info(f"x402: Budget used by {normalize_address(address)}, remaining {format_amount(new_balance)}")
                return new_balance

        raise LedgerConflictError(f"Could not debit budget for {address}: too much contention")

    def credit(self, address: str, amount: Decimal) -> Decimal:
        """
        Atomically add `amount` to the balance.

        Returns:
            The new balance

        Raises:
            LedgerConflictError: If the balance kept changing underneath us
        """
        if amount < 0:
            raise ValueError(f"credit amount must be non-negative, got {amount}")

        key = budget_key(address)
        for _ in range(MAX_CAS_ATTEMPTS):
            raw = self.store.get(key)
            new_balance = parse_amount(raw) + amount
            if self.store.compare_and_set(key, raw, format_amount(new_balance)):
                return new_balance

        raise LedgerConflictError(f"Could not credit budget for {address}: too much contention")

    def is_reference_spent(self, reference: str) -> bool:
        return self.store.get(reference_key(reference)) is not None

    def claim_reference(self, reference: str) -> bool:
        """
        Mark a reference as spent.

        Returns:
            True if this call claimed it, False if it was already spent
        """
        return self.store.set_if_absent(
            reference_key(reference),
            SPENT_MARKER,
            self.reference_ttl_seconds
        )

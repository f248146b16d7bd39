# evice/x402/audit.py
"""
Audit logging for x402 payments.

Every payment decision made by the gate pipeline and the deposit endpoint
is appended to a JSON-lines file for reconciliation and dispute handling.

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH

Events logged:
- 402 invoice issued (amount, currency, reference)
- Budget debited (payer, amount, remaining budget)
- Payment verified (tx hash, reference, sender, amount received)
- Payment failed (tx hash, reference, failure kind, message)
- Replay detected (reference)
- Deposit confirmed (payer, amount credited, new budget)

Audit failures are logged and swallowed; they never affect the response.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from evice.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    BUDGET_DEBITED = "budget_debited"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_FAILED = "payment_failed"
    REPLAY_DETECTED = "replay_detected"
    DEPOSIT_CONFIRMED = "deposit_confirmed"


def generate_event_id() -> str:
    """Generate a short unique ID for an audit event."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    payer_address: Optional[str] = None
) -> Dict[str, Any]:
    """Build an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "event_id": generate_event_id(),
        "payer_address": payer_address.lower() if payer_address else None,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    payer_address: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the x402 audit log.

    Returns:
        The event_id written, or None on error
    """
    event = create_audit_event(event_type, data, payer_address)

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['event_id']}]")
        return event["event_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    amount: Any,
    currency: str,
    reference: str,
    path: str,
    payer_address: Optional[str] = None
) -> Optional[str]:
    """Log a 402 invoice being issued."""
    return log_audit_event(
        AuditEventType.PAYMENT_REQUIRED_SENT,
        {"amount": amount, "currency": currency, "reference": reference, "path": path},
        payer_address
    )


def log_budget_debited(payer_address: str, amount: Any, remaining: Any) -> Optional[str]:
    """Log a request paid from a pre-funded budget."""
    return log_audit_event(
        AuditEventType.BUDGET_DEBITED,
        {"amount": amount, "remaining": remaining},
        payer_address
    )


def log_payment_verified(
    tx_hash: str,
    reference: str,
    sender: Optional[str],
    amount_received: Any
) -> Optional[str]:
    """Log a verified on-chain payment."""
    return log_audit_event(
        AuditEventType.PAYMENT_VERIFIED,
        {"tx_hash": tx_hash, "reference": reference, "amount_received": amount_received},
        sender
    )


def log_payment_failed(
    tx_hash: str,
    reference: str,
    reason: str,
    message: Optional[str] = None,
    payer_address: Optional[str] = None
) -> Optional[str]:
    """Log an on-chain payment that failed verification."""
    return log_audit_event(
        AuditEventType.PAYMENT_FAILED,
        {"tx_hash": tx_hash, "reference": reference, "reason": reason, "message": message},
        payer_address
    )


def log_replay_detected(
    reference: str,
    tx_hash: Optional[str] = None,
    payer_address: Optional[str] = None
) -> Optional[str]:
    """Log an attempt to reuse a spent reference."""
    return log_audit_event(
        AuditEventType.REPLAY_DETECTED,
        {"reference": reference, "tx_hash": tx_hash},
        payer_address
    )


def log_deposit_confirmed(
    payer_address: str,
    tx_hash: str,
    reference: str,
    amount_credited: Any,
    new_budget: Any
) -> Optional[str]:
    """Log a budget deposit credited to a payer."""
    return log_audit_event(
        AuditEventType.DEPOSIT_CONFIRMED,
        {
            "tx_hash": tx_hash,
            "reference": reference,
            "amount_credited": amount_credited,
            "new_budget": new_budget,
        },
        payer_address
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log.

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]

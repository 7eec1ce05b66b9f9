from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from nightlife.models import PaymentProvider, PaymentStatus

logger = logging.getLogger(__name__)

KNOWN_STATUSES = frozenset(s.value for s in PaymentStatus)
FINAL_STATUSES = frozenset(
    {
        PaymentStatus.APPROVED.value,
        PaymentStatus.DECLINED.value,
        PaymentStatus.VOIDED.value,
        PaymentStatus.ERROR.value,
    }
)


def normalize_status(raw: Optional[Any]) -> str:
    """Upper-case the provider status; anything we do not store is clamped to PENDING."""
    status = str(raw if raw is not None else "UNKNOWN").strip().upper()
    return status if status in KNOWN_STATUSES else PaymentStatus.PENDING.value


def is_already_applied(transaction: Any, provider_tx_id: str, status: str) -> bool:
    return (
        transaction.payment_provider_transaction_id == provider_tx_id
        and str(transaction.payment_status or "").upper() == status
    )


def apply_status(
    transaction: Any,
    provider_tx_id: str,
    raw_status: Any,
    provider: str = PaymentProvider.WOMPI.value,
) -> Tuple[bool, str]:
    """
    Record the provider's view of a transaction on the row (caller commits).

    Returns (changed, stored status). A repeat of the stored id/status pair is
    a no-op. Moves out of a final status are still applied, but logged.
    """
    incoming = str(raw_status if raw_status is not None else "UNKNOWN").strip().upper()
    status = normalize_status(incoming)
    if is_already_applied(transaction, provider_tx_id, status):
        return False, status

    if status != incoming:
        logger.warning("Unrecognized payment status %s for %s, storing PENDING", incoming, provider_tx_id)

    previous = str(transaction.payment_status or "").upper()
    if previous in FINAL_STATUSES and previous != status:
        logger.warning(
            "Backward payment status transition %s -> %s on %s",
            previous,
            status,
            transaction.id,
        )

    transaction.payment_provider = provider
    transaction.payment_provider_transaction_id = provider_tx_id
    transaction.payment_status = status
    return True, status

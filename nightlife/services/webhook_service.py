from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nightlife.config import Config
from nightlife.models import (
    MenuPurchaseTransaction,
    TicketPurchaseTransaction,
    UnifiedPurchaseTransaction,
)
from nightlife.observability import increment_counter
from nightlife.services.checkout_service import CheckoutService
from nightlife.services.payment_status import apply_status

WebhookResponse = Tuple[Dict[str, Any], int]

REFERENCE_ROUTES: Tuple[Tuple[str, Type[Any]], ...] = (
    ("unified_", UnifiedPurchaseTransaction),
    ("ticket_", TicketPurchaseTransaction),
    ("menu_", MenuPurchaseTransaction),
)


def value_by_path(data: Any, path: str) -> Any:
    """Resolve a dotted path such as ``transaction.amount_in_cents``; None when any step is missing."""
    current = data
    for part in str(path).split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def _as_text(value: Any) -> str:
    # Match the provider's string concatenation of JSON scalars
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def compute_checksum(data: Dict[str, Any], properties: Iterable[str], timestamp: Any, events_key: str) -> str:
    raw = "".join(_as_text(value_by_path(data, prop)) for prop in properties)
    raw += _as_text(timestamp) + events_key
    return hashlib.sha256(raw.encode("utf-8")).hexdigest().lower()


class WebhookService:
    """
    Reconciles Wompi ``transaction.updated`` events with local transactions.

    Authenticity failures are acknowledged with 200 so the provider stops
    retrying, unless strict mode is on, in which case they get 403. Database
    failures are always acknowledged.
    """

    def __init__(
        self,
        db_session: Session,
        checkout: Optional[CheckoutService] = None,
        events_key: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> None:
        self.db = db_session
        self.checkout = checkout
        self.events_key = Config.WOMPI_EVENTS_KEY if events_key is None else events_key
        self.strict = Config.WOMPI_STRICT if strict is None else strict
        self.logger = logging.getLogger(__name__)

    def handle(self, body: Any) -> WebhookResponse:
        try:
            response = self._handle(body if isinstance(body, dict) else {})
        except Exception:
            self.logger.exception("Unexpected error while handling Wompi webhook")
            self._count("server_error")
            if self.strict:
                return {"success": False, "code": "SERVER_ERROR"}, 500
            return {"received": True}, 200
        return response

    def _handle(self, body: Dict[str, Any]) -> WebhookResponse:
        signature = body.get("signature") if isinstance(body.get("signature"), dict) else {}
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        transaction = data.get("transaction") if isinstance(data.get("transaction"), dict) else {}
        timestamp = body.get("timestamp")

        has_shape = (
            bool(signature.get("checksum"))
            and isinstance(signature.get("properties"), list)
            and timestamp is not None
            and bool(transaction.get("id"))
        )
        if not has_shape:
            self.logger.warning(
                "Wompi webhook with invalid shape",
                extra={
                    "wompi_tx_id": transaction.get("id"),
                    "has_signature": bool(signature),
                    "has_timestamp": timestamp is not None,
                },
            )
            return self._reject("INVALID_SIGNATURE_FORMAT")

        expected = compute_checksum(data, signature["properties"], timestamp, self.events_key)
        received = str(signature["checksum"]).lower()
        if not hmac.compare_digest(expected, received):
            # Never log the raw concatenation or the events key
            self.logger.warning("Wompi webhook checksum mismatch", extra={"wompi_tx_id": transaction["id"]})
            return self._reject("INVALID_CHECKSUM")

        provider_tx_id = str(transaction["id"])
        status = str(transaction.get("status") or "UNKNOWN").upper()
        reference = transaction.get("reference")

        model = self._route(reference)
        if model is None:
            self.logger.warning(
                "Wompi webhook with missing or unrecognized reference",
                extra={"wompi_tx_id": provider_tx_id, "reference": reference},
            )
            self._count("unrouted")
            return {"success": True}, 200

        try:
            record = (
                self.db.query(model)
                .filter(model.payment_provider_reference == reference)
                .first()
            )
            if record is None:
                self.logger.warning("No transaction for reference %s", reference)
                self._count("not_found")
                return {"success": True}, 200

            changed, stored = apply_status(record, provider_tx_id, status)
            if not changed:
                self.logger.info("Wompi event already processed for %s (%s)", reference, stored)
                self._count("duplicate")
                return {"success": True, "message": "Already processed"}, 200

            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Database error while applying Wompi status for %s", reference)
            self._count("db_error")
            return {"received": True, "updated": False}, 200

        self.logger.info(
            "Wompi status applied",
            extra={"reference": reference, "wompi_tx_id": provider_tx_id, "status": stored},
        )
        self._count("updated")

        if isinstance(record, UnifiedPurchaseTransaction) and self.checkout is not None:
            if stored == "APPROVED":
                ok, message, _ = self.checkout.fulfill(record)
                if not ok:
                    self.logger.error("Approved transaction %s not fulfilled: %s", record.id, message)
            self.checkout.announce(record)

        return {"success": True}, 200

    def _reject(self, code: str) -> WebhookResponse:
        self._count(code.lower())
        if self.strict:
            return {"success": False, "code": code}, 403
        return {"received": True}, 200

    @staticmethod
    def _route(reference: Any) -> Optional[Type[Any]]:
        if not isinstance(reference, str):
            return None
        for prefix, model in REFERENCE_ROUTES:
            if reference.startswith(prefix):
                return model
        return None

    @staticmethod
    def _count(outcome: str) -> None:
        increment_counter("wompi_webhooks_total", labels={"outcome": outcome})

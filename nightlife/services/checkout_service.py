from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nightlife.models import (
    Club,
    Event,
    MenuItem,
    MenuItemFromTicket,
    MenuItemVariant,
    MenuPurchase,
    PaymentProvider,
    PaymentStatus,
    Ticket,
    TicketPurchase,
    UnifiedPurchaseTransaction,
    User,
)
from nightlife.observability import increment_counter, record_event
from nightlife.services.payment_status import apply_status
from nightlife.services.pricing import DynamicPricing, Unavailable
from nightlife.services.qr_codec import QRCodec, QRPayload, QRType
from nightlife.services.schedule import EventOverride, VenueSchedule, coerce_date
from nightlife.services.sse import ConnectionRegistry, EventType, make_event
from nightlife.services.wompi_client import WompiClient

REFERENCE_PREFIX = "unified_"


@dataclass(frozen=True)
class CartLine:
    kind: str
    item_id: str
    quantity: int = 1
    variant_id: Optional[str] = None
    date: Optional[date] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CartLine":
        kind = str(raw.get("type") or raw.get("kind") or "").lower()
        if kind not in {"ticket", "menu"}:
            raise ValueError("Each cart line needs a type of 'ticket' or 'menu'")
        item_id = raw.get("ticket_id") if kind == "ticket" else raw.get("menu_item_id")
        item_id = item_id or raw.get("id")
        if not item_id:
            raise ValueError("Each cart line needs an item id")
        quantity = int(raw.get("quantity", 1))
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        line_date = coerce_date(raw["date"]) if raw.get("date") else None
        return cls(kind, str(item_id), quantity, raw.get("variant_id"), line_date)


class CheckoutService:
    """
    Unified checkout: prices the cart, opens a payment transaction and, once the
    payment is approved, issues ticket purchases, menu purchases and their QR codes.
    """

    def __init__(
        self,
        db_session: Session,
        codec: QRCodec,
        pricing: Optional[DynamicPricing] = None,
        wompi_client: Optional[WompiClient] = None,
        registry: Optional[ConnectionRegistry] = None,
    ) -> None:
        self.db = db_session
        self.codec = codec
        self.pricing = pricing or DynamicPricing()
        self.wompi = wompi_client or WompiClient()
        self.registry = registry
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------
    def initiate(
        self,
        club_id: str,
        email: str,
        lines: Iterable[CartLine],
        user: Optional[User] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[UnifiedPurchaseTransaction]]:
        now = now or datetime.now(timezone.utc)
        lines = list(lines)
        if not email or "@" not in email:
            return False, "A valid email is required", None
        if not lines:
            return False, "Cart is empty", None

        club = self.db.get(Club, club_id)
        if club is None:
            return False, "Club not found", None
        schedule = VenueSchedule.from_club(club)

        ticket_lines = [line for line in lines if line.kind == "ticket"]
        menu_lines = [line for line in lines if line.kind == "menu"]

        ok, message, priced_tickets, ticket_date = self._price_tickets(club, schedule, ticket_lines, now)
        if not ok:
            return False, message, None
        ok, message, priced_menu = self._price_menu(club, schedule, menu_lines, ticket_date, now)
        if not ok:
            return False, message, None

        ticket_subtotal = round(sum(l["unit_price"] * l["quantity"] for l in priced_tickets), 2)
        menu_subtotal = round(sum(l["unit_price"] * l["quantity"] for l in priced_menu), 2)
        total = round(ticket_subtotal + menu_subtotal, 2)
        is_free = total == 0

        transaction = UnifiedPurchaseTransaction(
            id=str(uuid4()),
            user_id=user.id if user else None,
            session_id=session_id,
            club_id=club.id,
            buyer_email=email.strip().lower(),
            ticket_date=ticket_date,
            total_paid=total,
            ticket_subtotal=ticket_subtotal,
            menu_subtotal=menu_subtotal,
            payment_provider=PaymentProvider.FREE.value if is_free else PaymentProvider.WOMPI.value,
            payment_provider_reference=f"{REFERENCE_PREFIX}{uuid4().hex}",
            payment_status=PaymentStatus.APPROVED.value if is_free else PaymentStatus.PENDING.value,
            cart_snapshot={"tickets": priced_tickets, "menu": priced_menu},
        )

        try:
            self.db.add(transaction)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to create checkout transaction for club %s", club.id)
            return False, "Could not create checkout", None

        increment_counter("checkouts_initiated_total", labels={"free": str(is_free).lower()})
        self.logger.info(
            "Checkout initiated",
            extra={"transaction_id": transaction.id, "club_id": club.id, "total": total},
        )

        if is_free:
            success, message, _ = self.fulfill(transaction, now=now)
            if not success:
                return False, message, transaction
            return True, "Free checkout completed", transaction
        return True, "Checkout created", transaction

    def _price_tickets(
        self,
        club: Club,
        schedule: VenueSchedule,
        lines: List[CartLine],
        now: datetime,
    ) -> Tuple[bool, str, List[Dict[str, Any]], Optional[date]]:
        priced: List[Dict[str, Any]] = []
        ticket_date: Optional[date] = None
        for line in lines:
            ticket = self.db.get(Ticket, line.item_id)
            if ticket is None or not ticket.is_active or ticket.club_id != club.id:
                return False, "Ticket not found for this club", [], None

            if ticket.is_event_ticket and ticket.event is not None:
                line_date = coerce_date(ticket.event.date)
            else:
                line_date = line.date or (coerce_date(ticket.available_date) if ticket.available_date else None)
            if line_date is None:
                return False, f"A date is required for {ticket.name}", [], None
            if ticket_date is not None and line_date != ticket_date:
                return False, "All tickets in one checkout must be for the same date", [], None
            ticket_date = line_date

            quote = self.pricing.price_for_ticket(ticket, schedule, line_date, now)
            if isinstance(quote, Unavailable):
                return False, f"{ticket.name} is no longer available ({quote.reason})", [], None

            priced.append(
                {
                    "ticket_id": ticket.id,
                    "quantity": line.quantity,
                    "date": line_date.isoformat(),
                    "unit_price": quote.price,
                    "base_price": float(ticket.price or 0),
                    "reason": quote.reason,
                }
            )
        return True, "ok", priced, ticket_date

    def _price_menu(
        self,
        club: Club,
        schedule: VenueSchedule,
        lines: List[CartLine],
        ticket_date: Optional[date],
        now: datetime,
    ) -> Tuple[bool, str, List[Dict[str, Any]]]:
        if not lines:
            return True, "ok", []

        menu_date = ticket_date or self.pricing.clock.localize(now).date()
        event = (
            self.db.query(Event)
            .filter(Event.club_id == club.id, Event.date == menu_date, Event.is_active.is_(True))
            .first()
        )
        override = EventOverride.from_event(event) if event is not None else None

        priced: List[Dict[str, Any]] = []
        for line in lines:
            item = self.db.get(MenuItem, line.item_id)
            if item is None or not item.is_active or item.club_id != club.id:
                return False, "Menu item not found for this club", []

            variant = None
            if line.variant_id:
                variant = self.db.get(MenuItemVariant, line.variant_id)
                if variant is None or variant.menu_item_id != item.id:
                    return False, f"Variant not found for {item.name}", []
            elif item.has_variants:
                return False, f"Choose a variant for {item.name}", []

            quote = self.pricing.price_for_menu_item(item, variant, schedule, override, menu_date, now)
            if isinstance(quote, Unavailable):
                return False, f"{item.name} is not available ({quote.reason})", []

            priced.append(
                {
                    "menu_item_id": item.id,
                    "variant_id": variant.id if variant else None,
                    "quantity": line.quantity,
                    "unit_price": quote.price,
                    "base_price": quote.base_price,
                    "reason": quote.reason,
                }
            )
        return True, "ok", priced

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------
    def fulfill(
        self,
        transaction: UnifiedPurchaseTransaction,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[UnifiedPurchaseTransaction]]:
        """Issue purchases and QR codes for an approved transaction. Safe to call repeatedly."""
        if transaction.processed_at is not None:
            return True, "Already fulfilled", transaction
        if transaction.payment_status != PaymentStatus.APPROVED.value:
            return False, "Transaction is not approved", transaction

        now = now or datetime.now(timezone.utc)
        try:
            # Claim first so a concurrent webhook and status poll fulfil once
            claimed = (
                self.db.query(UnifiedPurchaseTransaction)
                .filter(
                    UnifiedPurchaseTransaction.id == transaction.id,
                    UnifiedPurchaseTransaction.processed_at.is_(None),
                )
                .update({"processed_at": now}, synchronize_session=False)
            )
            if claimed != 1:
                self.db.rollback()
                return True, "Already fulfilled", transaction

            snapshot = transaction.cart_snapshot or {}
            ticket_count = self._issue_tickets(transaction, snapshot.get("tickets", []))
            menu_count = self._issue_menu(transaction, snapshot.get("menu", []))
            self.db.commit()
            self.db.refresh(transaction)
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Fulfilment failed for transaction %s", transaction.id)
            return False, "Could not fulfil transaction", transaction

        increment_counter("checkouts_fulfilled_total")
        record_event(
            "checkout_fulfilled",
            {"transaction_id": transaction.id, "tickets": ticket_count, "menu_lines": menu_count},
        )
        self.logger.info("Transaction %s fulfilled", transaction.id)
        return True, "Fulfilled", transaction

    def _issue_tickets(self, transaction: UnifiedPurchaseTransaction, lines: List[Dict[str, Any]]) -> int:
        issued = 0
        for line in lines:
            ticket = self.db.get(Ticket, line["ticket_id"])
            if ticket is None:
                self.logger.warning("Ticket %s vanished before fulfilment", line["ticket_id"])
                continue
            bundled = list(ticket.included_menu_items)
            for _ in range(int(line["quantity"])):
                purchase = TicketPurchase(
                    id=str(uuid4()),
                    transaction_id=transaction.id,
                    ticket_id=ticket.id,
                    club_id=transaction.club_id,
                    user_id=transaction.user_id,
                    email=transaction.buyer_email,
                    date=coerce_date(line["date"]),
                    original_base_price=line["base_price"],
                    price_at_checkout=line["unit_price"],
                    dynamic_pricing_reason=line.get("reason"),
                )
                purchase.qr_code_encrypted = self.codec.encrypt(
                    QRPayload(type=QRType.TICKET, club_id=transaction.club_id, id=purchase.id)
                )
                if bundled:
                    purchase.menu_qr_encrypted = self.codec.encrypt(
                        QRPayload(
                            type=QRType.MENU_FROM_TICKET,
                            club_id=transaction.club_id,
                            ticket_purchase_id=purchase.id,
                        )
                    )
                self.db.add(purchase)
                for included in bundled:
                    self.db.add(
                        MenuItemFromTicket(
                            ticket_purchase_id=purchase.id,
                            menu_item_id=included.menu_item_id,
                            variant_id=included.variant_id,
                            quantity=included.quantity,
                        )
                    )
                issued += 1
        return issued

    def _issue_menu(self, transaction: UnifiedPurchaseTransaction, lines: List[Dict[str, Any]]) -> int:
        for line in lines:
            self.db.add(
                MenuPurchase(
                    transaction_id=transaction.id,
                    menu_item_id=line["menu_item_id"],
                    variant_id=line.get("variant_id"),
                    club_id=transaction.club_id,
                    user_id=transaction.user_id,
                    email=transaction.buyer_email,
                    quantity=int(line["quantity"]),
                    original_base_price=line["base_price"],
                    price_at_checkout=line["unit_price"],
                    dynamic_pricing_reason=line.get("reason"),
                )
            )
        if lines:
            transaction.qr_payload = self.codec.encrypt(
                QRPayload(type=QRType.MENU, club_id=transaction.club_id, id=transaction.id)
            )
        return len(lines)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def refresh_status(
        self,
        transaction: UnifiedPurchaseTransaction,
        provider_tx_id: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[UnifiedPurchaseTransaction]]:
        """Ask Wompi for the latest status of a pending transaction and apply it."""
        provider_tx_id = provider_tx_id or transaction.payment_provider_transaction_id
        if transaction.payment_status != PaymentStatus.PENDING.value or not provider_tx_id:
            return True, "No refresh needed", transaction

        success, message, data = self.wompi.get_transaction(provider_tx_id)
        if not success or data is None:
            return False, message, transaction

        return self.record_provider_status(transaction, provider_tx_id, data.get("status"))

    def record_provider_status(
        self,
        transaction: UnifiedPurchaseTransaction,
        provider_tx_id: str,
        raw_status: Any,
    ) -> Tuple[bool, str, Optional[UnifiedPurchaseTransaction]]:
        changed, status = apply_status(transaction, provider_tx_id, raw_status)
        if not changed:
            return True, "Already processed", transaction
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to store status %s for %s", status, transaction.id)
            return False, "Could not update transaction", transaction

        if status == PaymentStatus.APPROVED.value:
            ok, message, _ = self.fulfill(transaction)
            if not ok:
                self.logger.error("Approved transaction %s not fulfilled: %s", transaction.id, message)
        self.announce(transaction)
        return True, "Updated", transaction

    def announce(self, transaction: UnifiedPurchaseTransaction) -> None:
        if self.registry is None:
            return
        self.registry.publish(
            transaction.id,
            make_event(
                EventType.STATUS_UPDATE,
                transaction.id,
                status=transaction.payment_status,
                data={
                    "wompiTransactionId": transaction.payment_provider_transaction_id,
                    "reference": transaction.payment_provider_reference,
                },
            ),
        )

    @staticmethod
    def describe(transaction: UnifiedPurchaseTransaction) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "transaction_id": transaction.id,
            "reference": transaction.payment_provider_reference,
            "status": transaction.payment_status,
            "provider": transaction.payment_provider,
            "total_paid": float(transaction.total_paid or 0),
            "ticket_subtotal": float(transaction.ticket_subtotal or 0),
            "menu_subtotal": float(transaction.menu_subtotal or 0),
            "is_free": transaction.payment_provider == PaymentProvider.FREE.value,
            "fulfilled": transaction.processed_at is not None,
        }
        if transaction.processed_at is not None:
            body["tickets"] = [
                {
                    "ticket_purchase_id": p.id,
                    "date": p.date.isoformat() if p.date else None,
                    "qr": p.qr_code_encrypted,
                    "menu_qr": p.menu_qr_encrypted,
                }
                for p in transaction.ticket_purchases
            ]
            body["menu_qr"] = transaction.qr_payload
        return body

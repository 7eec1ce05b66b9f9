from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nightlife.models import (
    Club,
    Event,
    PaymentStatus,
    TicketPurchase,
    UnifiedPurchaseTransaction,
    User,
    UserRole,
)
from nightlife.observability import increment_counter, record_event
from nightlife.services.access_policy import AccessPolicy
from nightlife.services.admission import AdmissionDecision, AdmissionRules
from nightlife.services.qr_codec import InvalidQRCode, QRCodec, QRPayload, QRType
from nightlife.services.schedule import EventOverride, VenueSchedule, coerce_date


class RedemptionError(str, Enum):
    INVALID_QR = "INVALID_QR"
    WRONG_QR_TYPE = "WRONG_QR_TYPE"
    ACCESS_DENIED = "ACCESS_DENIED"
    NOT_FOUND = "NOT_FOUND"
    PAYMENT_NOT_APPROVED = "PAYMENT_NOT_APPROVED"
    ALREADY_USED = "ALREADY_USED"
    WRONG_WEEKDAY = "WRONG_WEEKDAY"
    OUTSIDE_HOURS = "OUTSIDE_HOURS"
    FUTURE_EVENT = "FUTURE_EVENT"
    EXPIRED = "EXPIRED"
    SERVER_ERROR = "SERVER_ERROR"


_STATUS_CODES: Dict[RedemptionError, int] = {
    RedemptionError.INVALID_QR: 400,
    RedemptionError.WRONG_QR_TYPE: 400,
    RedemptionError.ACCESS_DENIED: 403,
    RedemptionError.NOT_FOUND: 404,
    RedemptionError.PAYMENT_NOT_APPROVED: 400,
    RedemptionError.ALREADY_USED: 410,
    RedemptionError.SERVER_ERROR: 500,
}


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass
class RedemptionResult:
    valid: bool
    reason: str
    code: Optional[RedemptionError] = None
    used_at: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        if self.valid or self.code is None:
            return 200
        return _STATUS_CODES.get(self.code, 400)

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"valid": self.valid, "reason": self.reason}
        if self.code is not None:
            body["code"] = self.code.value
        if self.used_at is not None:
            body["used_at"] = self.used_at.isoformat()
        body.update(self.details)
        return body

    @classmethod
    def ok(cls, reason: str, details: Optional[Dict[str, Any]] = None, used_at: Optional[datetime] = None) -> "RedemptionResult":
        return cls(valid=True, reason=reason, used_at=used_at, details=details or {})

    @classmethod
    def fail(cls, code: RedemptionError, reason: str, used_at: Optional[datetime] = None) -> "RedemptionResult":
        return cls(valid=False, reason=reason, code=code, used_at=used_at)


class RedemptionService:
    """
    Validates scanned QR tokens and flips the single-use flags.

    Tickets are scanned at the door by bouncers and club owners. Menu tokens
    are scanned at the bar by waiters and club owners; bundled menu items on a
    ticket (``menu_from_ticket``) are served by waiters only.

    Each flag moves UNUSED -> USED exactly once. The transition is a single
    conditional UPDATE, so two scanners racing on the same token see one
    success and one ``ALREADY_USED`` carrying the first timestamp.
    """

    TICKET_ROLES: FrozenSet[UserRole] = frozenset({UserRole.BOUNCER, UserRole.CLUBOWNER})
    MENU_ROLES: FrozenSet[UserRole] = frozenset({UserRole.WAITER, UserRole.CLUBOWNER})
    BUNDLED_MENU_ROLES: FrozenSet[UserRole] = frozenset({UserRole.WAITER})

    def __init__(
        self,
        db_session: Session,
        codec: QRCodec,
        rules: Optional[AdmissionRules] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self.db = db_session
        self.codec = codec
        self.rules = rules or AdmissionRules()
        self.policy = policy or AccessPolicy(db_session)
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    def preview_ticket(self, token: str, user: Optional[User], now: Optional[datetime] = None) -> RedemptionResult:
        return self._ticket(token, user, now, confirm=False)

    def confirm_ticket(self, token: str, user: Optional[User], now: Optional[datetime] = None) -> RedemptionResult:
        return self._ticket(token, user, now, confirm=True)

    def _ticket(self, token: str, user: Optional[User], now: Optional[datetime], confirm: bool) -> RedemptionResult:
        now = now or datetime.now(timezone.utc)
        result = self._ticket_inner(token, user, now, confirm)
        self._count("ticket", confirm, result)
        return result

    def _ticket_inner(self, token: str, user: Optional[User], now: datetime, confirm: bool) -> RedemptionResult:
        payload = self._decode(token, {QRType.TICKET})
        if isinstance(payload, RedemptionResult):
            return payload
        if not AccessPolicy.has_role(user, self.TICKET_ROLES):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "Only bouncers or club owners can validate tickets")

        purchase = self._ticket_purchase(payload.id)
        if purchase is None:
            return RedemptionResult.fail(RedemptionError.NOT_FOUND, "Ticket purchase not found")
        if payload.club_id and payload.club_id != purchase.club_id:
            return RedemptionResult.fail(RedemptionError.INVALID_QR, "Invalid QR code")
        if not self.policy.can_act(user, purchase.club_id):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "You are not allowed to validate tickets for this club")

        ticket = purchase.ticket
        is_event_ticket = bool(ticket is not None and ticket.is_event_ticket)
        override = self._ticket_override(purchase)
        details = self._ticket_details(purchase)

        if not confirm:
            decision = self.rules.is_admissible(purchase.date, VenueSchedule(), None, now, preview=True)
            details["is_future_event"] = decision.is_future_event
            details["is_used"] = bool(purchase.is_used)
            return RedemptionResult.ok("Ticket found", details, used_at=_as_utc(purchase.used_at))

        if purchase.is_used:
            return self._already_used("ticket", _as_utc(purchase.used_at))

        decision = self.rules.is_admissible(
            purchase.date,
            self._schedule(purchase.club_id),
            override,
            now,
            is_event_ticket=is_event_ticket,
        )
        if not decision.admissible:
            return self._rejected(decision)

        used_at = _as_utc(now)
        claimed = self._claim(
            TicketPurchase,
            TicketPurchase.id == purchase.id,
            TicketPurchase.is_used.is_(False),
            values={"is_used": True, "used_at": used_at},
        )
        if claimed is None:
            return RedemptionResult.fail(RedemptionError.SERVER_ERROR, "Could not record redemption")
        if not claimed:
            self.db.refresh(purchase)
            return self._already_used("ticket", _as_utc(purchase.used_at))

        self.logger.info("Ticket %s redeemed at club %s", purchase.id, purchase.club_id)
        record_event("ticket_redeemed", {"ticket_purchase_id": purchase.id, "club_id": purchase.club_id})
        details["is_used"] = True
        return RedemptionResult.ok("Ticket redeemed", details, used_at=used_at)

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------
    def preview_menu(self, token: str, user: Optional[User], now: Optional[datetime] = None) -> RedemptionResult:
        return self._menu(token, user, now, confirm=False)

    def confirm_menu(self, token: str, user: Optional[User], now: Optional[datetime] = None) -> RedemptionResult:
        return self._menu(token, user, now, confirm=True)

    def _menu(self, token: str, user: Optional[User], now: Optional[datetime], confirm: bool) -> RedemptionResult:
        now = now or datetime.now(timezone.utc)
        payload = self._decode(token, {QRType.MENU, QRType.MENU_FROM_TICKET})
        if isinstance(payload, RedemptionResult):
            result = payload
            kind = "menu"
        elif payload.type == QRType.MENU_FROM_TICKET:
            result = self._bundled_menu(payload, user, now, confirm)
            kind = QRType.MENU_FROM_TICKET
        else:
            result = self._unified_menu(payload, user, now, confirm)
            kind = QRType.MENU
        self._count(kind, confirm, result)
        return result

    def _unified_menu(self, payload: QRPayload, user: Optional[User], now: datetime, confirm: bool) -> RedemptionResult:
        if not AccessPolicy.has_role(user, self.MENU_ROLES):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "Only waiters or club owners can validate menu orders")

        transaction = (
            self.db.query(UnifiedPurchaseTransaction)
            .filter(UnifiedPurchaseTransaction.id == payload.id)
            .first()
        )
        if transaction is None:
            return RedemptionResult.fail(RedemptionError.NOT_FOUND, "Menu order not found")
        if payload.club_id and payload.club_id != transaction.club_id:
            return RedemptionResult.fail(RedemptionError.INVALID_QR, "Invalid QR code")
        if not self.policy.can_act(user, transaction.club_id):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "You are not allowed to validate menu orders for this club")
        if transaction.payment_status != PaymentStatus.APPROVED.value:
            return RedemptionResult.fail(RedemptionError.PAYMENT_NOT_APPROVED, "This order has not been paid")

        details = self._transaction_details(transaction)
        if not confirm:
            details["is_used"] = bool(transaction.is_menu_used)
            return RedemptionResult.ok("Menu order found", details, used_at=_as_utc(transaction.menu_used_at))

        if transaction.is_menu_used:
            return self._already_used("menu order", _as_utc(transaction.menu_used_at))

        decision = self.rules.is_admissible(
            None,
            self._schedule(transaction.club_id),
            self._event_on(transaction.club_id, self.rules.clock.localize(now).date()),
            now,
            noun="menu",
        )
        if not decision.admissible:
            return self._rejected(decision)

        used_at = _as_utc(now)
        claimed = self._claim(
            UnifiedPurchaseTransaction,
            UnifiedPurchaseTransaction.id == transaction.id,
            UnifiedPurchaseTransaction.is_menu_used.is_(False),
            values={"is_menu_used": True, "menu_used_at": used_at},
        )
        if claimed is None:
            return RedemptionResult.fail(RedemptionError.SERVER_ERROR, "Could not record redemption")
        if not claimed:
            self.db.refresh(transaction)
            return self._already_used("menu order", _as_utc(transaction.menu_used_at))

        self.logger.info("Menu order %s redeemed at club %s", transaction.id, transaction.club_id)
        record_event("menu_redeemed", {"transaction_id": transaction.id, "club_id": transaction.club_id})
        details["is_used"] = True
        return RedemptionResult.ok("Menu order redeemed", details, used_at=used_at)

    def _bundled_menu(self, payload: QRPayload, user: Optional[User], now: datetime, confirm: bool) -> RedemptionResult:
        if not AccessPolicy.has_role(user, self.BUNDLED_MENU_ROLES):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "Only waiters can validate menu items included with tickets")

        purchase = self._ticket_purchase(payload.ticket_purchase_id or payload.id)
        if purchase is None:
            return RedemptionResult.fail(RedemptionError.NOT_FOUND, "Ticket purchase not found")
        if payload.club_id and payload.club_id != purchase.club_id:
            return RedemptionResult.fail(RedemptionError.INVALID_QR, "Invalid QR code")
        if not self.policy.can_act(user, purchase.club_id):
            return RedemptionResult.fail(RedemptionError.ACCESS_DENIED, "You are not allowed to validate menu items for this club")
        if not purchase.bundled_menu_items:
            return RedemptionResult.fail(RedemptionError.NOT_FOUND, "This ticket does not include menu items")

        details = self._ticket_details(purchase)
        if not confirm:
            details["is_future_event"] = self.rules.is_future(purchase.date, now)
            details["is_used"] = bool(purchase.is_used_menu)
            return RedemptionResult.ok("Included menu items found", details, used_at=_as_utc(purchase.menu_qr_used_at))

        if purchase.is_used_menu:
            return self._already_used("menu QR", _as_utc(purchase.menu_qr_used_at))

        ticket = purchase.ticket
        decision = self.rules.is_admissible(
            purchase.date,
            self._schedule(purchase.club_id),
            self._ticket_override(purchase),
            now,
            is_event_ticket=bool(ticket is not None and ticket.is_event_ticket),
            noun="menu QR",
        )
        if not decision.admissible:
            return self._rejected(decision)

        used_at = _as_utc(now)
        claimed = self._claim(
            TicketPurchase,
            TicketPurchase.id == purchase.id,
            TicketPurchase.is_used_menu.is_(False),
            values={"is_used_menu": True, "menu_qr_used_at": used_at},
        )
        if claimed is None:
            return RedemptionResult.fail(RedemptionError.SERVER_ERROR, "Could not record redemption")
        if not claimed:
            self.db.refresh(purchase)
            return self._already_used("menu QR", _as_utc(purchase.menu_qr_used_at))

        self.logger.info("Bundled menu for ticket %s redeemed at club %s", purchase.id, purchase.club_id)
        details["is_used"] = True
        return RedemptionResult.ok("Included menu items redeemed", details, used_at=used_at)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _decode(self, token: str, accepted: set) -> QRPayload | RedemptionResult:
        if not token:
            return RedemptionResult.fail(RedemptionError.INVALID_QR, "QR code is required")
        try:
            payload = self.codec.decrypt(token)
        except InvalidQRCode:
            return RedemptionResult.fail(RedemptionError.INVALID_QR, "Invalid QR code")
        if payload.type not in accepted:
            return RedemptionResult.fail(
                RedemptionError.WRONG_QR_TYPE,
                f"This QR code is a {payload.type} code and cannot be validated here",
            )
        return payload

    def _claim(self, model: Any, *criteria: Any, values: Dict[str, Any]) -> Optional[bool]:
        """Conditional single-row update. True if this call flipped the flag, None on DB failure."""
        try:
            rowcount = (
                self.db.query(model)
                .filter(*criteria)
                .update(values, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to record redemption on %s", model.__tablename__)
            return None
        return rowcount == 1

    def _ticket_purchase(self, purchase_id: Optional[str]) -> Optional[TicketPurchase]:
        if not purchase_id:
            return None
        return (
            self.db.query(TicketPurchase)
            .filter(TicketPurchase.id == purchase_id, TicketPurchase.deleted_at.is_(None))
            .first()
        )

    def _schedule(self, club_id: str) -> VenueSchedule:
        club = self.db.get(Club, club_id)
        if club is None:
            return VenueSchedule()
        return VenueSchedule.from_club(club)

    def _event_on(self, club_id: str, day: date) -> Optional[EventOverride]:
        event = (
            self.db.query(Event)
            .filter(Event.club_id == club_id, Event.date == day, Event.is_active.is_(True))
            .first()
        )
        return EventOverride.from_event(event) if event is not None else None

    def _ticket_override(self, purchase: TicketPurchase) -> Optional[EventOverride]:
        """Event hours governing a ticket: its own event, else any event held on the purchase date."""
        ticket = purchase.ticket
        if ticket is not None and ticket.is_event_ticket and ticket.event is not None:
            return EventOverride.from_event(ticket.event)
        return self._event_on(purchase.club_id, coerce_date(purchase.date))

    def _already_used(self, noun: str, used_at: Optional[datetime]) -> RedemptionResult:
        when = used_at.isoformat() if used_at else "an earlier scan"
        return RedemptionResult.fail(
            RedemptionError.ALREADY_USED,
            f"This {noun} has already been used ({when})",
            used_at=used_at,
        )

    @staticmethod
    def _rejected(decision: AdmissionDecision) -> RedemptionResult:
        code = RedemptionError(decision.kind.value) if decision.kind else RedemptionError.OUTSIDE_HOURS
        return RedemptionResult.fail(code, decision.reason or "Not redeemable right now")

    @staticmethod
    def _ticket_details(purchase: TicketPurchase) -> Dict[str, Any]:
        ticket = purchase.ticket
        included: List[Dict[str, Any]] = [
            {
                "menu_item_id": line.menu_item_id,
                "name": line.menu_item.name if line.menu_item else None,
                "variant": line.variant.name if line.variant else None,
                "quantity": line.quantity,
            }
            for line in purchase.bundled_menu_items
        ]
        return {
            "ticket_purchase_id": purchase.id,
            "club_id": purchase.club_id,
            "ticket_name": ticket.name if ticket else None,
            "date": purchase.date.isoformat() if purchase.date else None,
            "email": purchase.email,
            "price_paid": float(purchase.price_at_checkout or 0),
            "included_menu_items": included,
        }

    @staticmethod
    def _transaction_details(transaction: UnifiedPurchaseTransaction) -> Dict[str, Any]:
        items = [
            {
                "menu_item_id": line.menu_item_id,
                "name": line.menu_item.name if line.menu_item else None,
                "variant": line.variant.name if line.variant else None,
                "quantity": line.quantity,
                "unit_price": float(line.price_at_checkout or 0),
            }
            for line in transaction.menu_purchases
            if line.deleted_at is None
        ]
        return {
            "transaction_id": transaction.id,
            "club_id": transaction.club_id,
            "email": transaction.buyer_email,
            "items": items,
            "total": round(sum(i["unit_price"] * i["quantity"] for i in items), 2),
        }

    @staticmethod
    def _count(kind: str, confirm: bool, result: RedemptionResult) -> None:
        increment_counter(
            "qr_redemptions_total",
            labels={
                "kind": kind,
                "mode": "confirm" if confirm else "preview",
                "outcome": result.code.value if result.code else "OK",
            },
        )

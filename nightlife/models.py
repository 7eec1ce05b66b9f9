from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from nightlife.database import Base


def _uuid() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "user"
    BOUNCER = "bouncer"
    WAITER = "waiter"
    CLUBOWNER = "clubowner"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"


class PaymentProvider(str, Enum):
    WOMPI = "wompi"
    FREE = "free"
    MOCK = "mock"


class TicketCategory(str, Enum):
    GENERAL = "general"
    EVENT = "event"
    FREE = "free"


class User(Base):
    __tablename__ = 'users'
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(32), default=UserRole.USER.value, nullable=False)
    # Assigned club for bouncers and waiters; owners are resolved through Club.owner_id
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return (self.role or '').lower() == UserRole.ADMIN.value

    @property
    def is_staff(self) -> bool:
        return (self.role or '').lower() in {
            UserRole.BOUNCER.value,
            UserRole.WAITER.value,
            UserRole.CLUBOWNER.value,
        }


class Club(Base):
    __tablename__ = 'clubs'
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), ForeignKey('users.id', use_alter=True), nullable=True)
    # ["Friday", "Saturday"]
    open_days = Column(JSON, default=list)
    # [{"day": "Friday", "open": "22:00", "close": "02:00"}]
    open_hours = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    events = relationship("Event", back_populates="club")
    tickets = relationship("Ticket", back_populates="club")


class Event(Base):
    __tablename__ = 'events'
    id = Column(String(36), primary_key=True, default=_uuid)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    name = Column(String(255), nullable=False)
    date = Column(Date, nullable=False)
    open_time = Column(String(5))
    close_time = Column(String(5))
    is_active = Column(Boolean, default=True, nullable=False)

    club = relationship("Club", back_populates="events")
    tickets = relationship("Ticket", back_populates="event")

    @property
    def has_hours(self) -> bool:
        return bool(self.open_time and self.close_time)


class Ticket(Base):
    __tablename__ = 'tickets'
    id = Column(String(36), primary_key=True, default=_uuid)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    event_id = Column(String(36), ForeignKey('events.id'), nullable=True)
    name = Column(String(255), nullable=False)
    category = Column(String(32), default=TicketCategory.GENERAL.value, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    dynamic_pricing_enabled = Column(Boolean, default=True, nullable=False)
    available_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    club = relationship("Club", back_populates="tickets")
    event = relationship("Event", back_populates="tickets")
    included_menu_items = relationship("TicketIncludedMenuItem", back_populates="ticket")

    @property
    def is_event_ticket(self) -> bool:
        return self.category == TicketCategory.EVENT.value

    @property
    def is_free(self) -> bool:
        return self.category == TicketCategory.FREE.value or float(self.price or 0) <= 0

    @property
    def includes_menu_items(self) -> bool:
        return bool(self.included_menu_items)


class MenuItem(Base):
    __tablename__ = 'menu_items'
    id = Column(String(36), primary_key=True, default=_uuid)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=True)
    has_variants = Column(Boolean, default=False, nullable=False)
    dynamic_pricing_enabled = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    variants = relationship("MenuItemVariant", back_populates="menu_item")


class MenuItemVariant(Base):
    __tablename__ = 'menu_item_variants'
    id = Column(String(36), primary_key=True, default=_uuid)
    menu_item_id = Column(String(36), ForeignKey('menu_items.id'), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    dynamic_pricing_enabled = Column(Boolean, default=True, nullable=False)

    menu_item = relationship("MenuItem", back_populates="variants")


class TicketIncludedMenuItem(Base):
    __tablename__ = 'ticket_included_menu_items'
    id = Column(String(36), primary_key=True, default=_uuid)
    ticket_id = Column(String(36), ForeignKey('tickets.id'), nullable=False)
    menu_item_id = Column(String(36), ForeignKey('menu_items.id'), nullable=False)
    variant_id = Column(String(36), ForeignKey('menu_item_variants.id'), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    ticket = relationship("Ticket", back_populates="included_menu_items")
    menu_item = relationship("MenuItem")
    variant = relationship("MenuItemVariant")


class PaymentTrackingMixin:
    """Provider bookkeeping shared by every transaction table the webhook can touch."""

    payment_provider = Column(String(32), default=PaymentProvider.WOMPI.value, nullable=False)
    payment_provider_transaction_id = Column(String(255), unique=True, nullable=True)
    payment_provider_reference = Column(String(255), index=True, nullable=True)
    payment_status = Column(String(16), default=PaymentStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class UnifiedPurchaseTransaction(PaymentTrackingMixin, Base):
    __tablename__ = 'unified_purchase_transactions'
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=True)
    session_id = Column(String(255), nullable=True)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    buyer_email = Column(String(255), nullable=False)
    ticket_date = Column(Date, nullable=True)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)
    ticket_subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    menu_subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    # Encrypted "menu" QR for the menu lines of this checkout
    qr_payload = Column(Text, nullable=True)
    is_menu_used = Column(Boolean, default=False, nullable=False)
    menu_used_at = Column(DateTime(timezone=True), nullable=True)
    # Priced cart lines captured at initiation, consumed by fulfilment
    cart_snapshot = Column(JSON, default=dict)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    club = relationship("Club")
    ticket_purchases = relationship("TicketPurchase", back_populates="transaction")
    menu_purchases = relationship("MenuPurchase", back_populates="transaction")


class TicketPurchaseTransaction(PaymentTrackingMixin, Base):
    """Ticket-only checkout envelope kept for references prefixed ``ticket_``."""

    __tablename__ = 'ticket_purchase_transactions'
    id = Column(String(36), primary_key=True, default=_uuid)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    buyer_email = Column(String(255), nullable=False)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)


class MenuPurchaseTransaction(PaymentTrackingMixin, Base):
    """Menu-only checkout envelope kept for references prefixed ``menu_``."""

    __tablename__ = 'menu_purchase_transactions'
    id = Column(String(36), primary_key=True, default=_uuid)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    buyer_email = Column(String(255), nullable=False)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)


class TicketPurchase(Base):
    __tablename__ = 'ticket_purchases'
    id = Column(String(36), primary_key=True, default=_uuid)
    transaction_id = Column(String(36), ForeignKey('unified_purchase_transactions.id'), nullable=True)
    ticket_id = Column(String(36), ForeignKey('tickets.id'), nullable=False)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=True)
    session_id = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False)
    date = Column(Date, nullable=False)
    original_base_price = Column(Numeric(12, 2), nullable=False, default=0)
    price_at_checkout = Column(Numeric(12, 2), nullable=False, default=0)
    dynamic_pricing_reason = Column(String(64), nullable=True)
    qr_code_encrypted = Column(Text, nullable=True)
    menu_qr_encrypted = Column(Text, nullable=True)
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    is_used_menu = Column(Boolean, default=False, nullable=False)
    menu_qr_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    ticket = relationship("Ticket")
    transaction = relationship("UnifiedPurchaseTransaction", back_populates="ticket_purchases")
    bundled_menu_items = relationship("MenuItemFromTicket", back_populates="ticket_purchase")


class MenuItemFromTicket(Base):
    __tablename__ = 'menu_items_from_tickets'
    id = Column(String(36), primary_key=True, default=_uuid)
    ticket_purchase_id = Column(String(36), ForeignKey('ticket_purchases.id'), nullable=False)
    menu_item_id = Column(String(36), ForeignKey('menu_items.id'), nullable=False)
    variant_id = Column(String(36), ForeignKey('menu_item_variants.id'), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    ticket_purchase = relationship("TicketPurchase", back_populates="bundled_menu_items")
    menu_item = relationship("MenuItem")
    variant = relationship("MenuItemVariant")


class MenuPurchase(Base):
    __tablename__ = 'menu_purchases'
    id = Column(String(36), primary_key=True, default=_uuid)
    transaction_id = Column(String(36), ForeignKey('unified_purchase_transactions.id'), nullable=False)
    menu_item_id = Column(String(36), ForeignKey('menu_items.id'), nullable=False)
    variant_id = Column(String(36), ForeignKey('menu_item_variants.id'), nullable=True)
    club_id = Column(String(36), ForeignKey('clubs.id'), nullable=False)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=True)
    session_id = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    original_base_price = Column(Numeric(12, 2), nullable=False, default=0)
    price_at_checkout = Column(Numeric(12, 2), nullable=False, default=0)
    dynamic_pricing_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    transaction = relationship("UnifiedPurchaseTransaction", back_populates="menu_purchases")
    menu_item = relationship("MenuItem")
    variant = relationship("MenuItemVariant")

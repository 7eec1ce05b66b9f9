# tests/conftest.py
"""
Shared fixtures: a throwaway SQLite database, a QR codec with a fixed test key,
and small factories for clubs, staff and purchases.
"""
import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="nightlife-tests-")

# Must be set before nightlife.config is imported
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'nightlife_test.db')}"
os.environ["QR_ENCRYPTION_KEY"] = "0123456789abcdef0123456789abcdef"
os.environ["WOMPI_EVENTS_KEY"] = "test_events_key"
os.environ["WOMPI_STRICT"] = "false"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["VENUE_UTC_OFFSET_HOURS"] = "-5"
os.environ.pop("VENUE_TIMEZONE", None)

from nightlife.database import Base, SessionLocal, engine  # noqa: E402
from nightlife.models import (  # noqa: E402
    Club,
    Event,
    MenuItem,
    MenuItemVariant,
    PaymentStatus,
    Ticket,
    TicketCategory,
    TicketIncludedMenuItem,
    TicketPurchase,
    UnifiedPurchaseTransaction,
    User,
)
from nightlife.services.qr_codec import QRCodec  # noqa: E402

TEST_KEY = os.environ["QR_ENCRYPTION_KEY"]
VENUE_TZ = timezone(timedelta(hours=-5))

FRIDAY_NIGHT_HOURS = [{"day": "Friday", "open": "22:00", "close": "02:00"}]


def local(year, month, day, hour=0, minute=0):
    """Venue wall-clock instant (UTC-5)."""
    return datetime(year, month, day, hour, minute, tzinfo=VENUE_TZ)


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Fresh session per test; every table is emptied afterwards."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture
def codec():
    return QRCodec(TEST_KEY)


class Factory:
    def __init__(self, session):
        self.db = session

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def club(self, open_days=("Friday",), open_hours=None, owner=None, name="Club Aurora"):
        return self._save(
            Club(
                name=name,
                owner_id=owner.id if owner else None,
                open_days=list(open_days),
                open_hours=FRIDAY_NIGHT_HOURS if open_hours is None else open_hours,
            )
        )

    def user(self, role="user", club=None):
        return self._save(
            User(
                email=f"{role}_{uuid4().hex[:8]}@example.com",
                role=role,
                club_id=club.id if club else None,
            )
        )

    def event(self, club, day, open_time="21:00", close_time="03:00", name="Launch Party"):
        return self._save(
            Event(club_id=club.id, name=name, date=day, open_time=open_time, close_time=close_time)
        )

    def ticket(self, club, price=50000, category=TicketCategory.GENERAL.value, event=None, dynamic=True, name="General Cover"):
        return self._save(
            Ticket(
                club_id=club.id,
                event_id=event.id if event else None,
                name=name,
                category=category,
                price=price,
                dynamic_pricing_enabled=dynamic,
            )
        )

    def menu_item(self, club, price=20000, has_variants=False, name="Aguardiente"):
        return self._save(
            MenuItem(club_id=club.id, name=name, price=None if has_variants else price, has_variants=has_variants)
        )

    def variant(self, item, price=90000, name="Bottle"):
        return self._save(MenuItemVariant(menu_item_id=item.id, name=name, price=price))

    def include_menu(self, ticket, item, quantity=1):
        return self._save(TicketIncludedMenuItem(ticket_id=ticket.id, menu_item_id=item.id, quantity=quantity))

    def ticket_purchase(self, ticket, day, **overrides):
        values = dict(
            ticket_id=ticket.id,
            club_id=ticket.club_id,
            email="buyer@example.com",
            date=day,
            original_base_price=ticket.price,
            price_at_checkout=ticket.price,
        )
        values.update(overrides)
        return self._save(TicketPurchase(**values))

    def transaction(self, club, status=PaymentStatus.PENDING.value, reference=None, **overrides):
        values = dict(
            club_id=club.id,
            buyer_email="buyer@example.com",
            payment_provider_reference=reference or f"unified_{uuid4().hex}",
            payment_status=status,
            cart_snapshot={"tickets": [], "menu": []},
        )
        values.update(overrides)
        return self._save(UnifiedPurchaseTransaction(**values))


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def friday():
    return date(2024, 5, 31)

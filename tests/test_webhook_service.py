import hashlib
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from nightlife.models import PaymentStatus, TicketPurchaseTransaction
from nightlife.observability.metrics import registry as metrics, reset_metrics
from nightlife.services import webhook_service as webhook_module
from nightlife.services.checkout_service import CheckoutService
from nightlife.services.sse import ConnectionRegistry
from nightlife.services.webhook_service import WebhookService, compute_checksum, value_by_path

EVENTS_KEY = "test_events_key"
PROPERTIES = ["transaction.id", "transaction.status", "transaction.amount_in_cents"]
TIMESTAMP = 1717200000


def _body(reference, status="APPROVED", tx_id="wompi-1", checksum=None):
    data = {
        "transaction": {
            "id": tx_id,
            "status": status,
            "reference": reference,
            "amount_in_cents": 4990000,
        }
    }
    return {
        "event": "transaction.updated",
        "data": data,
        "signature": {
            "properties": PROPERTIES,
            "checksum": checksum or compute_checksum(data, PROPERTIES, TIMESTAMP, EVENTS_KEY),
        },
        "timestamp": TIMESTAMP,
    }


@pytest.fixture
def lenient(db_session):
    return WebhookService(db_session, events_key=EVENTS_KEY, strict=False)


@pytest.fixture
def strict(db_session):
    return WebhookService(db_session, events_key=EVENTS_KEY, strict=True)


def test_checksum_concatenates_values_timestamp_and_key():
    data = {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 4990000}}
    expected = hashlib.sha256(b"tx-1APPROVED4990000" + b"1717200000" + b"secret").hexdigest()
    assert compute_checksum(data, PROPERTIES, TIMESTAMP, "secret") == expected


def test_missing_properties_hash_as_empty_strings():
    data = {"transaction": {"id": "tx-1"}}
    expected = hashlib.sha256(b"tx-1" + b"1717200000" + b"secret").hexdigest()
    assert compute_checksum(data, PROPERTIES, TIMESTAMP, "secret") == expected


def test_value_by_path():
    assert value_by_path({"a": {"b": {"c": 3}}}, "a.b.c") == 3
    assert value_by_path({"a": {}}, "a.b.c") is None
    assert value_by_path({"a": 1}, "a.b") is None


@pytest.mark.parametrize("body", [{}, {"signature": {"checksum": "x"}}, {"data": {"transaction": {"id": "t"}}}])
def test_invalid_shape_lenient_and_strict(lenient, strict, body):
    assert lenient.handle(body) == ({"received": True}, 200)
    assert strict.handle(body) == ({"success": False, "code": "INVALID_SIGNATURE_FORMAT"}, 403)


def test_checksum_mismatch_lenient_and_strict(lenient, strict, factory):
    transaction = factory.transaction(factory.club())
    body = _body(transaction.payment_provider_reference, checksum="0" * 64)

    assert lenient.handle(body) == ({"received": True}, 200)
    assert strict.handle(body) == ({"success": False, "code": "INVALID_CHECKSUM"}, 403)
    assert transaction.payment_status == PaymentStatus.PENDING.value


def test_checksum_comparison_ignores_case(lenient, factory, db_session):
    transaction = factory.transaction(factory.club())
    body = _body(transaction.payment_provider_reference, status="DECLINED")
    body["signature"]["checksum"] = body["signature"]["checksum"].upper()

    assert lenient.handle(body) == ({"success": True}, 200)
    db_session.refresh(transaction)
    assert transaction.payment_status == "DECLINED"


def test_same_event_twice_is_applied_once(lenient, factory, db_session):
    reset_metrics()
    transaction = factory.transaction(factory.club())
    body = _body(transaction.payment_provider_reference, status="approved")

    first = lenient.handle(body)
    second = lenient.handle(body)

    assert first == ({"success": True}, 200)
    assert second == ({"success": True, "message": "Already processed"}, 200)
    db_session.refresh(transaction)
    assert transaction.payment_status == "APPROVED"
    assert transaction.payment_provider_transaction_id == "wompi-1"
    assert transaction.payment_provider == "wompi"
    assert metrics.counter_value("wompi_webhooks_total", {"outcome": "updated"}) == 1
    assert metrics.counter_value("wompi_webhooks_total", {"outcome": "duplicate"}) == 1


def test_unknown_status_is_clamped_to_pending(lenient, factory, db_session):
    transaction = factory.transaction(factory.club())
    lenient.handle(_body(transaction.payment_provider_reference, status="REFUNDED_SOMEHOW"))

    db_session.refresh(transaction)
    assert transaction.payment_status == PaymentStatus.PENDING.value
    assert transaction.payment_provider_transaction_id == "wompi-1"


def test_backward_transition_is_applied_and_logged(lenient, factory, db_session, caplog):
    transaction = factory.transaction(factory.club())
    lenient.handle(_body(transaction.payment_provider_reference, status="APPROVED"))
    lenient.handle(_body(transaction.payment_provider_reference, status="VOIDED"))

    db_session.refresh(transaction)
    assert transaction.payment_status == "VOIDED"
    assert "Backward payment status transition APPROVED -> VOIDED" in caplog.text


def test_ticket_prefix_routes_to_ticket_transactions(lenient, factory, db_session):
    club = factory.club()
    legacy = TicketPurchaseTransaction(
        club_id=club.id,
        buyer_email="buyer@example.com",
        payment_provider_reference="ticket_abc123",
    )
    db_session.add(legacy)
    db_session.commit()

    assert lenient.handle(_body("ticket_abc123")) == ({"success": True}, 200)
    db_session.refresh(legacy)
    assert legacy.payment_status == "APPROVED"


def test_unrouted_reference_is_acknowledged(lenient):
    assert lenient.handle(_body("order_999")) == ({"success": True}, 200)


def test_database_error_is_acknowledged(lenient, factory, db_session, monkeypatch):
    transaction = factory.transaction(factory.club())

    def _boom():
        raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", _boom)
    assert lenient.handle(_body(transaction.payment_provider_reference)) == (
        {"received": True, "updated": False},
        200,
    )


def test_unexpected_error_is_500_only_in_strict_mode(lenient, strict, factory, monkeypatch):
    transaction = factory.transaction(factory.club())

    def _explode(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(webhook_module, "apply_status", _explode)
    body = _body(transaction.payment_provider_reference)

    assert strict.handle(body) == ({"success": False, "code": "SERVER_ERROR"}, 500)
    assert lenient.handle(body) == ({"received": True}, 200)


def test_approval_fulfils_and_broadcasts(db_session, codec, factory):
    club = factory.club()
    ticket = factory.ticket(club)
    transaction = factory.transaction(
        club,
        cart_snapshot={
            "tickets": [
                {
                    "ticket_id": ticket.id,
                    "quantity": 2,
                    "date": date(2024, 5, 31).isoformat(),
                    "unit_price": 45000.0,
                    "base_price": 50000.0,
                    "reason": "covers_preopen_2_3h_10_off",
                }
            ],
            "menu": [],
        },
    )
    sse = ConnectionRegistry()
    subscription = sse.subscribe(transaction.id)
    checkout = CheckoutService(db_session, codec, registry=sse)
    service = WebhookService(db_session, checkout=checkout, events_key=EVENTS_KEY, strict=False)

    assert service.handle(_body(transaction.payment_provider_reference)) == ({"success": True}, 200)

    db_session.refresh(transaction)
    assert transaction.processed_at is not None
    assert len(transaction.ticket_purchases) == 2
    assert all(p.qr_code_encrypted for p in transaction.ticket_purchases)

    event = subscription.next_event(timeout=0)
    assert event["type"] == "status_update"
    assert event["status"] == "APPROVED"
    assert event["transactionId"] == transaction.id

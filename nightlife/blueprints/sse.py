from __future__ import annotations

from flask import Blueprint, Response, current_app

from nightlife.config import Config
from nightlife.database import get_db
from nightlife.extensions import get_registry
from nightlife.models import UnifiedPurchaseTransaction
from nightlife.services.sse import EventType, format_event, make_event, stream

sse_bp = Blueprint("sse", __name__, url_prefix="/api/sse")

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@sse_bp.route("/transaction/<transaction_id>", methods=["GET"])
def transaction_events(transaction_id: str):
    transaction = get_db().get(UnifiedPurchaseTransaction, transaction_id)
    if transaction is None:
        error = make_event(EventType.ERROR, transaction_id, message="Transaction not found")
        return Response(format_event(error), mimetype="text/event-stream", headers=_SSE_HEADERS)

    # Subscribe before reading the status so no update can fall in between
    subscription = get_registry().subscribe(transaction_id)
    initial = [
        make_event(EventType.CONNECTED, transaction_id),
        make_event(EventType.STATUS_UPDATE, transaction_id, status=transaction.payment_status),
    ]
    interval = current_app.config.get("SSE_PING_INTERVAL_SECONDS", Config.SSE_PING_INTERVAL_SECONDS)
    return Response(
        stream(subscription, initial, interval),
        mimetype="text/event-stream",
        headers=_SSE_HEADERS,
    )

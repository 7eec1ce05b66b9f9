from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from nightlife.database import get_db
from nightlife.models import Ticket
from nightlife.services.pricing import DynamicPricing, display_price
from nightlife.services.schedule import VenueSchedule, coerce_date

pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.route("/ticket/<ticket_id>", methods=["GET"])
def ticket_price(ticket_id: str):
    ticket = get_db().get(Ticket, ticket_id)
    if ticket is None or not ticket.is_active:
        return jsonify({"error": "Ticket not found", "code": "NOT_FOUND"}), 404

    raw_date = request.args.get("date")
    try:
        target_date = coerce_date(raw_date) if raw_date else None
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD", "code": "VALIDATION_ERROR"}), 400

    quote = DynamicPricing().price_for_ticket(
        ticket,
        VenueSchedule.from_club(ticket.club),
        target_date,
        datetime.now(timezone.utc),
    )
    return jsonify({"ticket_id": ticket.id, "name": ticket.name, **display_price(quote)})

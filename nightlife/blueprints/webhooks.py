from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from nightlife.database import get_db
from nightlife.extensions import get_codec, get_registry
from nightlife.services.checkout_service import CheckoutService
from nightlife.services.webhook_service import WebhookService

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhook")


@webhooks_bp.route("/wompi/ping", methods=["GET"])
def ping_wompi():
    return jsonify({"ok": True, "path": request.path, "method": request.method})


@webhooks_bp.route("/wompi", methods=["POST"])
def wompi_webhook():
    db = get_db()
    codec = get_codec()
    checkout = CheckoutService(db, codec, registry=get_registry()) if codec is not None else None
    service = WebhookService(
        db,
        checkout=checkout,
        events_key=current_app.config.get("WOMPI_EVENTS_KEY"),
        strict=current_app.config.get("WOMPI_STRICT"),
    )
    body, status_code = service.handle(request.get_json(silent=True))
    return jsonify(body), status_code

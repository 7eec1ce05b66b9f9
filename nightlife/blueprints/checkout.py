from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request, session

from nightlife.database import get_db
from nightlife.extensions import current_user, get_codec, get_registry
from nightlife.models import TicketPurchase, UnifiedPurchaseTransaction
from nightlife.services.checkout_service import CartLine, CheckoutService
from nightlife.services.qr_codec import QRCodec

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

logger = logging.getLogger(__name__)


def _service() -> CheckoutService:
    return CheckoutService(get_db(), get_codec(), registry=get_registry())


@checkout_bp.route("/initiate", methods=["POST"])
def initiate_checkout():
    if get_codec() is None:
        return jsonify({"success": False, "error": "Checkout is not configured", "code": "SERVER_ERROR"}), 503

    payload = request.get_json(silent=True) or {}
    club_id = payload.get("club_id")
    email = (payload.get("email") or "").strip()
    if not club_id:
        return jsonify({"success": False, "error": "club_id is required", "code": "VALIDATION_ERROR"}), 400

    try:
        lines = [CartLine.from_dict(raw) for raw in payload.get("items") or []]
    except (TypeError, ValueError) as exc:
        return jsonify({"success": False, "error": str(exc), "code": "VALIDATION_ERROR"}), 400

    success, message, transaction = _service().initiate(
        club_id,
        email,
        lines,
        user=current_user(),
        session_id=session.get("cart_session_id"),
    )
    if not success or transaction is None:
        return jsonify({"success": False, "error": message, "code": "CHECKOUT_FAILED"}), 400

    return jsonify({"success": True, "message": message, **CheckoutService.describe(transaction)}), 201


@checkout_bp.route("/status/<transaction_id>", methods=["GET"])
def checkout_status(transaction_id: str):
    db = get_db()
    transaction = db.get(UnifiedPurchaseTransaction, transaction_id)
    if transaction is None:
        return jsonify({"success": False, "error": "Transaction not found", "code": "NOT_FOUND"}), 404

    # Wompi appends ?id=<provider transaction id> to the redirect URL
    provider_tx_id = request.args.get("id")
    if get_codec() is not None:
        success, message, _ = _service().refresh_status(transaction, provider_tx_id)
        if not success:
            logger.warning("Status refresh failed for %s: %s", transaction_id, message)

    return jsonify({"success": True, **CheckoutService.describe(transaction)})


@checkout_bp.route("/status/<transaction_id>/qr/<code_id>.png", methods=["GET"])
def checkout_qr_image(transaction_id: str, code_id: str):
    """
    PNG for one code of a fulfilled checkout. ``code_id`` is a ticket purchase id,
    ``<ticket purchase id>-menu`` for its bundled menu code, or ``menu``.
    """
    db = get_db()
    transaction = db.get(UnifiedPurchaseTransaction, transaction_id)
    if transaction is None or transaction.processed_at is None:
        return jsonify({"success": False, "error": "Transaction not found", "code": "NOT_FOUND"}), 404

    if code_id == "menu":
        token = transaction.qr_payload
    else:
        wants_menu = code_id.endswith("-menu")
        purchase = db.get(TicketPurchase, code_id[: -len("-menu")] if wants_menu else code_id)
        if purchase is None or purchase.transaction_id != transaction.id:
            token = None
        else:
            token = purchase.menu_qr_encrypted if wants_menu else purchase.qr_code_encrypted
    if not token:
        return jsonify({"success": False, "error": "QR code not found", "code": "NOT_FOUND"}), 404

    return Response(QRCodec.render_png(token), mimetype="image/png")

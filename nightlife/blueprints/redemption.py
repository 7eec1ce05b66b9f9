from __future__ import annotations

from typing import Any, Callable, Optional

from flask import Blueprint, jsonify, request

from nightlife.database import get_db
from nightlife.extensions import current_user, get_codec
from nightlife.services.redemption_service import RedemptionResult, RedemptionService

redemption_bp = Blueprint("redemption", __name__, url_prefix="/api/qr")


def _token() -> Optional[str]:
    payload = request.get_json(silent=True) or {}
    token = payload.get("qr") or payload.get("qrCode") or payload.get("token")
    return str(token).strip() if token else None


def _run(action: Callable[[RedemptionService, str, Any], RedemptionResult]):
    if current_user() is None:
        return jsonify({"valid": False, "reason": "Authentication required", "code": "AUTH_REQUIRED"}), 401

    codec = get_codec()
    if codec is None:
        return jsonify({"valid": False, "reason": "QR validation is not configured", "code": "SERVER_ERROR"}), 503

    service = RedemptionService(get_db(), codec)
    result = action(service, _token() or "", current_user())
    return jsonify(result.as_dict()), result.status_code


@redemption_bp.route("/ticket/preview", methods=["POST"])
def preview_ticket():
    return _run(lambda service, token, user: service.preview_ticket(token, user))


@redemption_bp.route("/ticket/confirm", methods=["POST"])
def confirm_ticket():
    return _run(lambda service, token, user: service.confirm_ticket(token, user))


@redemption_bp.route("/menu/preview", methods=["POST"])
def preview_menu():
    return _run(lambda service, token, user: service.preview_menu(token, user))


@redemption_bp.route("/menu/confirm", methods=["POST"])
def confirm_menu():
    return _run(lambda service, token, user: service.confirm_menu(token, user))

# controllers/checkout.py
from flask import Blueprint, request, jsonify, current_app

from services.checkout import start_checkout
from services.metrics import CHECKOUT_STARTED
from services.payments.errors import GatewayError

checkout_bp = Blueprint("checkout", __name__)


@checkout_bp.post("/api/checkout")
def start():
    """Body: {"order": {...draft...}, "items": [{...}, ...]}"""
    payload = request.get_json(force=True, silent=True) or {}
    try:
        res = start_checkout(payload.get("order"), payload.get("items"))
    except ValueError as e:
        return jsonify(error=str(e)), 400
    except GatewayError as e:
        CHECKOUT_STARTED.labels(outcome="gateway_error").inc()
        current_app.logger.error("[CHECKOUT][GATEWAY] %s", e)
        return jsonify(error="Payment provider unavailable, please retry"), 502

    CHECKOUT_STARTED.labels(outcome="ok").inc()
    return jsonify(res), 200

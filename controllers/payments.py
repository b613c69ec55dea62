# controllers/payments.py
from __future__ import annotations
from time import time

from flask import Blueprint, request, jsonify, current_app

from models.intents_store import find_intent_by_provider_order_id
from models.payments_store import record_webhook_event
from services.finalize import (
    FinalizeResult, finalize_captured_payment, finalize_captured_payment_by_intent_id,
)
from services.metrics import (
    FINALIZE_LATENCY, FINALIZE_OUTCOMES, SIGNATURE_FAILURES, WEBHOOK_EVENTS,
)
from services.payments.base import WebhookEvent
from services.payments.errors import IntentNotFound, InvalidFinalizeRequest
from services.payments.registry import get_provider

payments_bp = Blueprint("payments", __name__,
                        url_prefix="/api/payments/razorpay")


def _result_json(res: FinalizeResult):
    return jsonify(status=res.outcome.value, checkoutIntentId=res.intent_id,
                   orderId=res.order_id, paymentId=res.payment_id)


def _event_label(event_type: str) -> str:
    return (event_type or "unknown").replace(".", "_")


@payments_bp.get("/config")
def config():
    return jsonify(keyId=get_provider().public_key_id())


# ----- browser callback after the checkout widget succeeds -----

@payments_bp.post("/verify")
def verify_and_record():
    """
    The browser posts the ids + signature it got from the checkout widget.
    The amount it sends is ignored: the server-side draft total is recorded.
    """
    payload = request.get_json(force=True, silent=True) or {}
    order_ref = str(payload.get("razorpayOrderId") or "").strip()
    payment_ref = str(payload.get("razorpayPaymentId") or "").strip()
    signature = str(payload.get("razorpaySignature") or "")

    if not order_ref or not payment_ref:
        return jsonify(error="razorpayOrderId and razorpayPaymentId are required"), 400

    provider = get_provider()
    if not provider.verify_checkout_signature(order_ref, payment_ref, signature):
        SIGNATURE_FAILURES.labels(surface="verify").inc()
        current_app.logger.warning(
            "[PAYMENT][VERIFY][BAD_SIGNATURE] providerOrderId=%s", order_ref)
        return jsonify(error="Invalid payment signature"), 400

    if not find_intent_by_provider_order_id(order_ref):
        return jsonify(error="Checkout intent not found"), 404

    t0 = time()
    try:
        res = finalize_captured_payment(
            order_ref, payment_ref, None, payload.get("currency"), "customer")
    except InvalidFinalizeRequest as e:
        return jsonify(error=str(e)), 400
    except IntentNotFound:
        return jsonify(error="Checkout intent not found"), 404
    except Exception:
        FINALIZE_OUTCOMES.labels(outcome="error", source="verify").inc()
        current_app.logger.exception(
            "[PAYMENT][VERIFY][ERR] providerOrderId=%s", order_ref)
        return jsonify(error="Payment could not be finalized, please retry"), 500
    finally:
        FINALIZE_LATENCY.labels(source="verify").observe(time() - t0)

    FINALIZE_OUTCOMES.labels(outcome=res.outcome.value, source="verify").inc()
    return _result_json(res), 200


# ----- provider webhooks (no auth, signature-verified) -----

@payments_bp.post("/webhook")
def webhook_live():
    return _handle_webhook("live")


@payments_bp.post("/webhook/test")
def webhook_test():
    return _handle_webhook("test")


@payments_bp.post("/webhook/stage")
def webhook_stage():
    return _handle_webhook("stage")


def _finalize_from_webhook(evt: WebhookEvent, actor: str) -> FinalizeResult:
    if not evt.provider_order_id.strip() and evt.checkout_intent_id is not None:
        # no provider order id in the entity; the intent id from notes is all we have
        return finalize_captured_payment_by_intent_id(
            evt.checkout_intent_id, None, evt.provider_payment_id,
            evt.amount, evt.currency, actor)
    try:
        return finalize_captured_payment(
            evt.provider_order_id, evt.provider_payment_id, evt.amount, evt.currency, actor)
    except IntentNotFound:
        # provider order id may not be linked yet; notes carry our intent id
        if evt.checkout_intent_id is None:
            raise
        return finalize_captured_payment_by_intent_id(
            evt.checkout_intent_id, evt.provider_order_id, evt.provider_payment_id,
            evt.amount, evt.currency, actor)


def _handle_webhook(environment: str):
    """
    Signature first, then finalize. Anything that is not a real failure
    (unknown intent, already converted, other event types) answers 204 so
    the provider stops redelivering; unexpected errors answer 500 so it retries.
    """
    log = current_app.logger
    provider = get_provider()
    if not provider.webhook_secret(environment):
        log.error("[WEBHOOK][%s] secret not configured", environment.upper())
        return jsonify(error=f"{environment} webhook secret not configured"), 503

    body = request.get_data() or b""
    try:
        evt = provider.parse_webhook(environment, body, request.headers)
    except ValueError as e:
        record_webhook_event(provider.name, environment, None, "", body, True)
        WEBHOOK_EVENTS.labels(provider=provider.name, event="unknown",
                              outcome="malformed").inc()
        log.warning("[WEBHOOK][%s][MALFORMED] %s", environment.upper(), e)
        return "", 204

    event_id = record_webhook_event(provider.name, environment, evt.external_event_id,
                                    evt.event_type, body, evt.signature_ok)
    label = _event_label(evt.event_type)

    if not evt.signature_ok:
        SIGNATURE_FAILURES.labels(surface="webhook").inc()
        WEBHOOK_EVENTS.labels(provider=provider.name, event=label,
                              outcome="bad_signature").inc()
        log.warning("[WEBHOOK][%s][BAD_SIGNATURE] eventRow=%s",
                    environment.upper(), event_id)
        return jsonify(error="Invalid webhook signature"), 400

    if not evt.is_capture:
        WEBHOOK_EVENTS.labels(provider=provider.name, event=label,
                              outcome="ignored").inc()
        log.info("[WEBHOOK][%s][IGNORED] event=%s",
                 environment.upper(), evt.event_type)
        return "", 204

    t0 = time()
    try:
        res = _finalize_from_webhook(evt, f"webhook:{environment}")
    except (InvalidFinalizeRequest, IntentNotFound) as e:
        WEBHOOK_EVENTS.labels(provider=provider.name, event=label,
                              outcome="noop").inc()
        log.info("[WEBHOOK][%s][NOOP] providerOrderId=%s reason=%s",
                 environment.upper(), evt.provider_order_id, e)
        return "", 204
    except Exception:
        FINALIZE_OUTCOMES.labels(outcome="error", source="webhook").inc()
        WEBHOOK_EVENTS.labels(provider=provider.name, event=label,
                              outcome="error").inc()
        log.exception("[WEBHOOK][%s][ERR] providerOrderId=%s",
                      environment.upper(), evt.provider_order_id)
        return jsonify(error="Webhook processing failed"), 500
    finally:
        FINALIZE_LATENCY.labels(source="webhook").observe(time() - t0)

    FINALIZE_OUTCOMES.labels(outcome=res.outcome.value, source="webhook").inc()
    WEBHOOK_EVENTS.labels(provider=provider.name, event=label, outcome="ok").inc()
    return "", 204

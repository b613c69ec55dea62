# tests/utils.py
import hashlib
import hmac
import json
import os

from models.base import session_scope
from models.intents_store import attach_provider_order_id, create_intent
from models.schema import CheckoutIntent


def sample_draft(**overrides):
    draft = {
        "customerId": 7,
        "currency": "INR",
        "itemsSubtotal": "450.00",
        "shippingFee": "50.00",
        "discountTotal": "0.00",
        "grandTotal": "500.00",
        "shipName": "Asha Rao",
        "shipPhone": "9800000000",
        "shipLine1": "12 MG Road",
        "shipPincode": "560001",
        "paymentMethod": "RAZORPAY",
    }
    draft.update(overrides)
    return draft


def sample_items():
    return [
        {"productId": 11, "productName": "Rose Bouquet", "productSlug": "rose-bouquet",
         "quantity": 2, "unitPrice": "150.00"},
        {"productId": 12, "productName": "Lily Vase", "quantity": 1, "unitPrice": "150.00"},
    ]


def make_intent(provider_order_id="order_TEST1", draft=None, items=None):
    """Committed PENDING intent, linked to `provider_order_id` when given."""
    intent = create_intent(draft or sample_draft(), items or sample_items(), actor="test")
    if provider_order_id:
        attach_provider_order_id(intent["id"], provider_order_id, "test")
    return intent["id"]


def set_intent_fields(intent_id, **fields):
    with session_scope() as s:
        ci = s.get(CheckoutIntent, intent_id)
        for k, v in fields.items():
            setattr(ci, k, v)


def checkout_signature(order_ref, payment_ref, secret=None):
    key = (secret or os.environ["RAZORPAY_KEY_SECRET"]).encode("utf-8")
    return hmac.new(key, f"{order_ref}|{payment_ref}".encode("utf-8"),
                    hashlib.sha256).hexdigest()


def webhook_body(event="payment.captured", order_ref="order_TEST1", payment_ref="pay_TEST1",
                 amount=50000, currency="INR", notes=None):
    return json.dumps({
        "entity": "event",
        "event": event,
        "payload": {"payment": {"entity": {
            "id": payment_ref,
            "order_id": order_ref,
            "amount": amount,
            "currency": currency,
            "status": "captured",
            "notes": notes if notes is not None else [],
        }}},
    }).encode("utf-8")


def webhook_headers(body, secret=None, event_id=None):
    key = (secret or os.environ["RAZORPAY_WEBHOOK_SECRET"]).encode("utf-8")
    headers = {
        "X-Razorpay-Signature": hmac.new(key, body, hashlib.sha256).hexdigest(),
        "Content-Type": "application/json",
    }
    if event_id:
        headers["X-Razorpay-Event-Id"] = event_id
    return headers

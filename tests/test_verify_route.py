from decimal import Decimal

from models.intents_store import get_intent
from models.orders_store import count_orders
from models.payments_store import get_payment_by_provider_payment_id
from tests.utils import checkout_signature, make_intent

VERIFY = "/api/payments/razorpay/verify"


def _payload(order_ref, payment_ref, signature=None, **extra):
    body = {
        "razorpayOrderId": order_ref,
        "razorpayPaymentId": payment_ref,
        "razorpaySignature": signature if signature is not None
        else checkout_signature(order_ref, payment_ref),
    }
    body.update(extra)
    return body


def test_verify_converts_intent(client):
    intent_id = make_intent("order_V1")
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1"))
    assert r.status_code == 200
    js = r.get_json()
    assert js["status"] == "converted"
    assert js["checkoutIntentId"] == intent_id
    assert js["orderId"]
    assert get_intent(intent_id)["status"] == "CONVERTED"


def test_verify_ignores_client_amount(client):
    make_intent("order_V1")
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1", amount=1, currency="inr"))
    assert r.status_code == 200
    pay = get_payment_by_provider_payment_id("pay_V1")
    assert pay["amount"] == Decimal("500.00")
    assert pay["currency"] == "INR"


def test_verify_twice_returns_already_converted(client):
    make_intent("order_V1")
    first = client.post(VERIFY, json=_payload("order_V1", "pay_V1")).get_json()
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1"))
    assert r.status_code == 200
    assert r.get_json()["status"] == "already_converted"
    assert r.get_json()["orderId"] == first["orderId"]
    assert count_orders() == 1


def test_verify_bad_signature_is_rejected(client):
    intent_id = make_intent("order_V1")
    bad = checkout_signature("order_V1", "pay_OTHER")
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1", signature=bad))
    assert r.status_code == 400
    assert get_intent(intent_id)["status"] == "PENDING"
    assert count_orders() == 0


def test_verify_signature_with_wrong_secret_is_rejected(client):
    make_intent("order_V1")
    bad = checkout_signature("order_V1", "pay_V1", secret="not-the-secret")
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1", signature=bad))
    assert r.status_code == 400


def test_verify_missing_ids(client):
    r = client.post(VERIFY, json={"razorpayOrderId": "", "razorpayPaymentId": "pay_1",
                                  "razorpaySignature": "x"})
    assert r.status_code == 400
    r = client.post(VERIFY, data="not json", content_type="application/json")
    assert r.status_code == 400


def test_verify_unknown_intent(client):
    r = client.post(VERIFY, json=_payload("order_NOPE", "pay_NOPE"))
    assert r.status_code == 404


def test_verify_internal_failure_is_500_and_retryable(client, monkeypatch):
    intent_id = make_intent("order_V1")

    def boom(*a, **kw):
        raise RuntimeError("db went away")

    monkeypatch.setattr("services.finalize.create_order_as_paid", boom)
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1"))
    assert r.status_code == 500
    assert get_intent(intent_id)["status"] == "PENDING"

    monkeypatch.undo()
    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1"))
    assert r.status_code == 200
    assert r.get_json()["status"] == "converted"


def test_config_exposes_key_id_only(client):
    r = client.get("/api/payments/razorpay/config")
    assert r.status_code == 200
    assert r.get_json() == {"keyId": "rzp_test_key"}


def test_verify_unknown_intent_status_is_skipped(client):
    from sqlalchemy import text
    from models.base import session_scope
    intent_id = make_intent("order_V1")
    with session_scope() as s:
        s.execute(text("UPDATE checkout_intent SET status = 'EXPIRED' WHERE id = :id"),
                  {"id": intent_id})

    r = client.post(VERIFY, json=_payload("order_V1", "pay_V1"))
    assert r.status_code == 200
    assert r.get_json()["status"] == "skipped"
    assert count_orders() == 0

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from models.base import session_scope
from models.intents_store import get_intent
from models.orders_store import count_orders, get_order
from models.payments_store import get_payment_by_provider_payment_id, list_payments_for_order
from models.schema import IntentStatus, Payment
from services.finalize import (
    Outcome, finalize_captured_payment, finalize_captured_payment_by_intent_id,
)
from services.payments.errors import IntentNotFound, InvalidFinalizeRequest
from tests.utils import make_intent, sample_draft, set_intent_fields


def _count_payments():
    with session_scope() as s:
        return int(s.execute(select(func.count(Payment.id))).scalar_one())


def test_capture_converts_intent_into_paid_order():
    intent_id = make_intent("order_A")

    res = finalize_captured_payment("order_A", "pay_A", None, "INR", "webhook:live")
    assert res.outcome is Outcome.CONVERTED
    assert res.converted
    assert res.intent_id == intent_id

    order = get_order(res.order_id)
    assert order["grand_total"] == Decimal("500.00")
    assert order["currency"] == "INR"
    assert order["status"] == "ORDERED"
    assert order["paid_at"] is not None
    assert order["provider_order_id"] == "order_A"
    assert order["provider_payment_id"] == "pay_A"
    assert order["public_code"]
    assert len(order["items"]) == 2
    assert sum(it["line_total"] for it in order["items"]) == Decimal("450.00")

    pay = get_payment_by_provider_payment_id("pay_A")
    assert pay["id"] == res.payment_id
    assert pay["order_id"] == res.order_id
    assert pay["status"] == "CAPTURED"
    assert pay["amount"] == Decimal("500.00")
    assert pay["currency"] == "INR"
    assert pay["provider_order_id"] == "order_A"

    ci = get_intent(intent_id)
    assert ci["status"] == "CONVERTED"
    assert ci["active"] is False
    assert ci["provider_payment_id"] == "pay_A"


def test_second_delivery_is_a_noop():
    make_intent("order_A")
    first = finalize_captured_payment("order_A", "pay_A")
    again = finalize_captured_payment("order_A", "pay_A", "500.00", "INR")

    assert again.outcome is Outcome.ALREADY_CONVERTED
    assert again.order_id == first.order_id
    assert again.payment_id == first.payment_id
    assert count_orders() == 1
    assert _count_payments() == 1


def test_captured_amount_overrides_order_total():
    make_intent("order_A")
    res = finalize_captured_payment("order_A", "pay_A", "499.5", "INR")
    pay = list_payments_for_order(res.order_id)[0]
    assert pay["amount"] == Decimal("499.50")
    assert get_order(res.order_id)["grand_total"] == Decimal("500.00")


def test_currency_is_trimmed_and_uppercased():
    make_intent("order_A")
    finalize_captured_payment("order_A", "pay_A", None, " inr ")
    assert get_payment_by_provider_payment_id("pay_A")["currency"] == "INR"


@pytest.mark.parametrize("currency", [None, "", "   "])
def test_blank_currency_defaults_to_inr(currency):
    make_intent("order_A", draft=sample_draft(currency="USD"))
    finalize_captured_payment("order_A", "pay_A", None, currency)
    assert get_payment_by_provider_payment_id("pay_A")["currency"] == "INR"


def test_customer_scenario_end_to_end():
    intent_id = make_intent("order_abc")

    res = finalize_captured_payment("order_abc", "pay_123", None, None, "customer")
    assert res.converted
    assert get_order(res.order_id)["grand_total"] == Decimal("500.00")
    pay = get_payment_by_provider_payment_id("pay_123")
    assert (pay["amount"], pay["currency"], pay["status"]) == (Decimal("500.00"), "INR", "CAPTURED")
    ci = get_intent(intent_id)
    assert (ci["status"], ci["active"]) == ("CONVERTED", False)

    again = finalize_captured_payment("order_abc", "pay_123", None, None, "customer")
    assert again.payment_id == res.payment_id
    assert count_orders() == 1
    assert get_intent(intent_id)["status"] == "CONVERTED"


def test_identifiers_are_trimmed():
    make_intent("order_A")
    res = finalize_captured_payment("  order_A ", " pay_A ")
    assert res.converted
    assert get_payment_by_provider_payment_id("pay_A") is not None


@pytest.mark.parametrize("order_ref,payment_ref", [
    ("", "pay_A"), ("   ", "pay_A"), (None, "pay_A"),
    ("order_A", ""), ("order_A", "  "), ("order_A", None),
])
def test_blank_identifiers_are_rejected_without_side_effects(order_ref, payment_ref):
    intent_id = make_intent("order_A")
    with pytest.raises(InvalidFinalizeRequest):
        finalize_captured_payment(order_ref, payment_ref)
    assert get_intent(intent_id)["status"] == "PENDING"
    assert count_orders() == 0


@pytest.mark.parametrize("amount", ["abc", "-1", -0.01])
def test_bad_captured_amount_is_rejected(amount):
    intent_id = make_intent("order_A")
    with pytest.raises(InvalidFinalizeRequest):
        finalize_captured_payment("order_A", "pay_A", amount)
    assert get_intent(intent_id)["status"] == "PENDING"


def test_unknown_provider_order_raises_not_found():
    make_intent("order_A")
    with pytest.raises(IntentNotFound):
        finalize_captured_payment("order_UNKNOWN", "pay_X")
    assert count_orders() == 0


def test_failure_rolls_back_and_reverts_to_pending(monkeypatch):
    intent_id = make_intent("order_A")

    def boom(*a, **kw):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr("services.finalize.create_order_as_paid", boom)
    with pytest.raises(RuntimeError):
        finalize_captured_payment("order_A", "pay_A")

    assert get_intent(intent_id)["status"] == "PENDING"
    assert get_intent(intent_id)["active"] is True
    assert count_orders() == 0
    assert _count_payments() == 0

    monkeypatch.undo()
    res = finalize_captured_payment("order_A", "pay_A")
    assert res.converted
    assert count_orders() == 1


def test_failure_after_order_insert_leaves_no_order(monkeypatch):
    intent_id = make_intent("order_A")

    def boom(*a, **kw):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr("services.finalize.record_captured_payment", boom)
    with pytest.raises(RuntimeError):
        finalize_captured_payment("order_A", "pay_A")

    assert get_intent(intent_id)["status"] == "PENDING"
    assert count_orders() == 0
    assert _count_payments() == 0


def test_unreadable_draft_fails_and_reverts():
    intent_id = make_intent("order_A")
    set_intent_fields(intent_id, order_draft_json="{not json")

    with pytest.raises(ValueError):
        finalize_captured_payment("order_A", "pay_A")
    assert get_intent(intent_id)["status"] == "PENDING"
    assert count_orders() == 0


def test_intent_being_converted_elsewhere_is_skipped():
    intent_id = make_intent("order_A")
    set_intent_fields(intent_id, status=IntentStatus.CONVERTING.value)

    res = finalize_captured_payment("order_A", "pay_A")
    assert res.outcome is Outcome.IN_PROGRESS
    assert res.order_id is None
    assert count_orders() == 0


class ProcessKilled(BaseException):
    """Not an Exception: nothing in the app catches it, like a dying worker."""


def test_crash_mid_conversion_leaves_intent_pending(monkeypatch):
    intent_id = make_intent("order_CRASH")

    def die(*a, **kw):
        raise ProcessKilled()

    monkeypatch.setattr("services.finalize.record_captured_payment", die)
    with pytest.raises(ProcessKilled):
        finalize_captured_payment("order_CRASH", "pay_CRASH")

    # the claim was never committed on its own
    assert get_intent(intent_id)["status"] == "PENDING"
    assert count_orders() == 0

    monkeypatch.undo()
    outcomes = [finalize_captured_payment("order_CRASH", "pay_CRASH").outcome
                for _ in range(3)]
    assert outcomes == [Outcome.CONVERTED, Outcome.ALREADY_CONVERTED, Outcome.ALREADY_CONVERTED]
    assert count_orders() == 1
    assert get_intent(intent_id)["status"] == "CONVERTED"


def test_stale_converting_claim_is_taken_over():
    intent_id = make_intent("order_STUCK")
    set_intent_fields(intent_id, status=IntentStatus.CONVERTING.value,
                      modified_at=datetime.now(timezone.utc) - timedelta(hours=1))

    res = finalize_captured_payment("order_STUCK", "pay_STUCK")
    assert res.outcome is Outcome.CONVERTED
    assert count_orders() == 1
    assert get_intent(intent_id)["status"] == "CONVERTED"


def test_claim_lease_is_configurable(monkeypatch):
    intent_id = make_intent("order_STUCK")
    set_intent_fields(intent_id, status=IntentStatus.CONVERTING.value,
                      modified_at=datetime.now(timezone.utc) - timedelta(minutes=2))

    assert finalize_captured_payment("order_STUCK", "pay_1").outcome is Outcome.IN_PROGRESS
    monkeypatch.setenv("CHECKOUT_CLAIM_LEASE_SECONDS", "60")
    assert finalize_captured_payment("order_STUCK", "pay_1").outcome is Outcome.CONVERTED


def _raw_status(intent_id, value):
    with session_scope() as s:
        s.execute(text("UPDATE checkout_intent SET status = :st WHERE id = :id"),
                  {"st": value, "id": intent_id})


@pytest.mark.parametrize("raw", ["FAILED", "", "expired"])
def test_unknown_status_is_skipped_and_left_alone(raw):
    intent_id = make_intent("order_ODD")
    _raw_status(intent_id, raw)

    res = finalize_captured_payment("order_ODD", "pay_ODD")
    assert res.outcome is Outcome.SKIPPED
    assert res.order_id is None
    assert count_orders() == 0
    assert get_intent(intent_id)["status"] == raw


def test_status_is_compared_trimmed_and_case_insensitive():
    intent_id = make_intent("order_WS")
    _raw_status(intent_id, " pending ")

    res = finalize_captured_payment("order_WS", "pay_WS")
    assert res.outcome is Outcome.CONVERTED
    assert get_intent(intent_id)["status"] == "CONVERTED"

    other = make_intent("order_LC")
    _raw_status(other, "converted")
    assert finalize_captured_payment("order_LC", "pay_LC").outcome is Outcome.ALREADY_CONVERTED


def test_payment_already_recorded_for_same_intent_is_recovered():
    intent_id = make_intent("order_A")
    first = finalize_captured_payment("order_A", "pay_A")
    # simulate a crash between the payment insert and the intent update
    set_intent_fields(intent_id, status=IntentStatus.PENDING.value, active=True)

    res = finalize_captured_payment("order_A", "pay_A")
    assert res.outcome is Outcome.CONVERTED
    assert res.order_id == first.order_id
    assert res.payment_id == first.payment_id
    assert count_orders() == 1
    assert get_intent(intent_id)["status"] == "CONVERTED"


def test_payment_id_reused_for_another_intent_is_refused():
    make_intent("order_A")
    other = make_intent("order_B")
    first = finalize_captured_payment("order_A", "pay_SHARED")

    res = finalize_captured_payment("order_B", "pay_SHARED")
    assert res.outcome is Outcome.DUPLICATE_PAYMENT
    assert res.order_id == first.order_id
    assert get_intent(other)["status"] == "PENDING"
    assert count_orders() == 1
    assert _count_payments() == 1


def test_concurrent_deliveries_convert_once():
    make_intent("order_RACE")
    results, errors = [], []
    gate = threading.Barrier(4)

    def worker(actor):
        gate.wait()
        try:
            results.append(finalize_captured_payment("order_RACE", "pay_RACE", None, "INR", actor))
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(f"t{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert not errors
    outcomes = [r.outcome for r in results]
    assert outcomes.count(Outcome.CONVERTED) == 1
    assert set(outcomes) <= {Outcome.CONVERTED, Outcome.ALREADY_CONVERTED, Outcome.IN_PROGRESS}
    assert count_orders() == 1
    assert _count_payments() == 1


def test_by_intent_id_links_missing_provider_order_id():
    intent_id = make_intent(provider_order_id=None)

    res = finalize_captured_payment_by_intent_id(intent_id, "order_LATE", "pay_LATE",
                                                 "500.00", "INR", "webhook:test")
    assert res.converted
    ci = get_intent(intent_id)
    assert ci["provider_order_id"] == "order_LATE"
    assert ci["status"] == "CONVERTED"


def test_by_intent_id_keeps_stored_provider_order_id():
    intent_id = make_intent("order_STORED")
    res = finalize_captured_payment_by_intent_id(intent_id, "order_OTHER", "pay_1")
    assert res.converted
    assert get_intent(intent_id)["provider_order_id"] == "order_STORED"
    assert get_order(res.order_id)["provider_order_id"] == "order_STORED"


def test_by_intent_id_errors():
    with pytest.raises(InvalidFinalizeRequest):
        finalize_captured_payment_by_intent_id(None, "order_A", "pay_A")
    with pytest.raises(InvalidFinalizeRequest):
        finalize_captured_payment_by_intent_id(1, "order_A", " ")
    with pytest.raises(IntentNotFound):
        finalize_captured_payment_by_intent_id(9999, "order_A", "pay_A")

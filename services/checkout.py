# services/checkout.py
"""
Checkout start: persist the intent, then create the provider order.

The intent is committed before the provider is called and the provider order
id is committed right after, each in its own transaction, so a webhook that
races the browser always finds a committed intent (by provider order id, or
by the checkoutIntentId carried in the order notes).
"""
from __future__ import annotations
import logging
from decimal import Decimal
from time import time

from models.intents_store import attach_provider_order_id, create_intent
from models.orders_store import compute_grand_total, compute_items_subtotal
from models.payments_store import to_decimal, to_minor_units
from services.payments.registry import cfg, get_provider

logger = logging.getLogger(__name__)


def _validated(draft, items) -> tuple[dict, list[dict]]:
    if not isinstance(draft, dict):
        raise ValueError("order is required")
    if not isinstance(items, list) or not items or not all(isinstance(i, dict) for i in items):
        raise ValueError("items must be a non-empty list")

    draft = dict(draft)
    for key in ("itemsSubtotal", "shippingFee", "discountTotal", "grandTotal"):
        if draft.get(key) is not None and to_decimal(draft[key]) < 0:
            raise ValueError(f"{key} must be >= 0")

    if draft.get("grandTotal") is None:
        subtotal = (to_decimal(draft["itemsSubtotal"]) if draft.get("itemsSubtotal") is not None
                    else compute_items_subtotal(items))
        draft["grandTotal"] = str(compute_grand_total(
            subtotal, to_decimal(draft.get("shippingFee")), to_decimal(draft.get("discountTotal"))))
    if to_decimal(draft["grandTotal"]) <= Decimal("0"):
        raise ValueError("grandTotal must be greater than zero")
    return draft, items


def start_checkout(draft: dict, items: list[dict], *, actor: str = "customer",
                   provider=None) -> dict:
    """Create the intent + provider order; returns what the checkout widget needs."""
    t0 = time()
    draft, items = _validated(draft, items)
    provider = provider or get_provider()

    logger.info("[CHECKOUT][START] customerId=%s itemsCount=%s currency=%s grandTotal=%s",
                draft.get("customerId"), len(items), draft.get("currency"), draft.get("grandTotal"))

    ttl = int(cfg("CHECKOUT_INTENT_TTL_MINUTES") or "120")
    intent = create_intent(draft, items, actor=actor, ttl_minutes=ttl)

    notes = {
        "checkoutIntentId": str(intent["id"]),
        "customerId": str(draft.get("customerId") or ""),
    }
    porder = provider.create_order(
        amount_minor=to_minor_units(intent["amount"]),
        currency=intent["currency"],
        receipt=f"CI{intent['id']}",
        notes=notes,
        payment_capture=True,
    )
    attach_provider_order_id(intent["id"], porder.provider_order_id, actor)

    logger.info("[CHECKOUT][OK] providerOrderId=%s checkoutIntentId=%s elapsedMs=%.1f",
                porder.provider_order_id, intent["id"], (time() - t0) * 1000)
    return {
        "type": "RZP_ORDER",
        "currency": intent["currency"],
        "checkoutIntentId": intent["id"],
        "keyId": provider.public_key_id(),
        "razorpayOrder": porder.raw,
    }

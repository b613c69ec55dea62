# models/orders_store.py
from __future__ import annotations
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models.base import session_scope
from models.pg_enums import OrderStatus
from models.schema import Order, OrderItem
from models.payments_store import normalize_currency, to_decimal

_ORDER_FIELDS = ("id", "public_code", "customer_id", "items_subtotal", "shipping_fee",
                 "discount_total", "grand_total", "currency", "ship_name", "ship_phone",
                 "ship_line1", "ship_line2", "ship_pincode", "order_notes", "payment_method",
                 "provider_order_id", "provider_payment_id", "paid_at", "created_at")
_ITEM_FIELDS = ("id", "product_id", "product_name", "product_slug", "quantity",
                "unit_price", "line_total", "options_text")

_ZERO = Decimal("0.00")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _line_total(it: dict) -> Decimal:
    if it.get("lineTotal") is not None:
        return to_decimal(it["lineTotal"])
    return to_decimal(it.get("unitPrice")) * _quantity(it)


def _quantity(it: dict) -> int:
    try:
        qty = int(it.get("quantity") if it.get("quantity") is not None else 1)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid quantity: {it.get('quantity')!r}") from None
    if qty <= 0:
        raise ValueError(f"Quantity must be positive, got {qty}")
    return qty


def compute_items_subtotal(items: list[dict]) -> Decimal:
    return sum((_line_total(it) for it in items or []), _ZERO)


def compute_grand_total(subtotal: Decimal, shipping: Decimal, discount: Decimal) -> Decimal:
    if discount < 0:
        discount = _ZERO
    grand = subtotal + shipping - discount
    return grand if grand > 0 else _ZERO


def create_order_as_paid(s: Session, draft: dict, items: list[dict], *,
                         provider_order_id: str | None = None,
                         provider_payment_id: str | None = None,
                         actor: str = "system") -> Order:
    """
    Materialize a paid Order (with its items) from a checkout draft.

    Only flushes inside the caller's transaction; if the caller rolls back,
    neither the order nor its items exist. Sends no notifications.
    """
    if not isinstance(draft, dict):
        raise ValueError("Order draft is required")

    now = _now()
    subtotal = (to_decimal(draft["itemsSubtotal"])
                if draft.get("itemsSubtotal") is not None else compute_items_subtotal(items))
    shipping = to_decimal(draft.get("shippingFee"))
    discount = to_decimal(draft.get("discountTotal"))
    grand = (to_decimal(draft["grandTotal"]) if draft.get("grandTotal") is not None
             else compute_grand_total(subtotal, shipping, discount))
    if grand < 0:
        raise ValueError("grandTotal must be >= 0")

    order = Order(
        customer_id=draft.get("customerId"),
        status=OrderStatus.ORDERED,
        items_subtotal=subtotal, shipping_fee=shipping,
        discount_total=discount if discount > 0 else _ZERO,
        grand_total=grand,
        currency=normalize_currency(draft.get("currency")),
        ship_name=draft.get("shipName"), ship_phone=draft.get("shipPhone"),
        ship_line1=draft.get("shipLine1"), ship_line2=draft.get("shipLine2"),
        ship_district_id=draft.get("shipDistrictId"), ship_state_id=draft.get("shipStateId"),
        ship_pincode=draft.get("shipPincode"), ship_country_id=draft.get("shipCountryId"),
        order_notes=draft.get("orderNotes"),
        payment_method=draft.get("paymentMethod") or "ONLINE",
        provider_order_id=provider_order_id,
        provider_payment_id=provider_payment_id,
        paid_at=now,
        active=True,
        created_at=now, created_by=actor,
        modified_at=now, modified_by=actor,
    )

    for it in items or []:
        name = (it.get("productName") or "").strip()
        if not name:
            raise ValueError("Every item needs a productName")
        options = it.get("optionsJson")
        order.items.append(OrderItem(
            product_id=it.get("productId"),
            product_name=name,
            product_slug=it.get("productSlug"),
            quantity=_quantity(it),
            unit_price=to_decimal(it.get("unitPrice")),
            line_total=_line_total(it),
            options_json=json.dumps(options) if options is not None else None,
            options_text=it.get("optionsText"),
            active=True,
            created_at=now, created_by=actor,
        ))

    s.add(order)
    s.flush()
    order.public_code = f"{now:%y}{order.id:04d}"
    s.flush()
    return order


def mark_order_paid(s: Session, order_id: int, ts: datetime | None = None) -> None:
    order = s.get(Order, order_id)
    if not order:
        raise ValueError(f"Order not found: {order_id}")
    order.paid_at = ts or _now()
    order.modified_at = _now()
    s.add(order)
    s.flush()


def get_order(order_id: int) -> Optional[dict]:
    with session_scope() as s:
        o = s.get(Order, order_id)
        if not o:
            return None
        out = {c: getattr(o, c) for c in _ORDER_FIELDS}
        out["status"] = o.status.value if o.status else None
        out["items"] = [{c: getattr(it, c) for c in _ITEM_FIELDS} for it in o.items]
        return out


def count_orders() -> int:
    from sqlalchemy import func, select
    with session_scope() as s:
        return int(s.execute(select(func.count(Order.id))).scalar_one())

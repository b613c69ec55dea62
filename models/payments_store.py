# models/payments_store.py (Postgres / SQLAlchemy)
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.base import session_scope
from models.pg_enums import PaymentStatus
from models.schema import Payment, PaymentEvent

DEFAULT_CURRENCY = "INR"

_FIELDS = ("id", "order_id", "amount", "currency", "provider_order_id",
           "provider_payment_id", "active", "created_at", "created_by")


def to_decimal(value, default: Decimal = Decimal("0")) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a valid amount: {value!r}") from None


def to_minor_units(amount: Decimal) -> int:
    """Rupees -> paise."""
    return int(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100)


def from_minor_units(units: int) -> Decimal:
    return (Decimal(int(units)) / Decimal(100)).quantize(Decimal("0.01"))


def normalize_currency(currency: str | None) -> str:
    cur = (currency or "").strip().upper()
    return cur or DEFAULT_CURRENCY


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_dict(p: Payment) -> dict:
    out = {c: getattr(p, c) for c in _FIELDS}
    out["status"] = p.status.value if p.status else None
    return out


# ----- ledger operations used inside the finalize transaction ---------------

def find_payment_by_provider_payment_id(s: Session, provider_payment_id: str) -> Optional[Payment]:
    if not provider_payment_id:
        return None
    return s.execute(select(Payment).where(
        Payment.provider_payment_id == provider_payment_id)).scalars().first()


def save_payment(s: Session, payment: Payment) -> Payment:
    s.add(payment)
    s.flush()
    return payment


def record_captured_payment(s: Session, *, order_id: int, provider_order_id: str | None,
                            provider_payment_id: str, currency: str | None,
                            amount: Decimal, actor: str | None = None) -> Payment:
    """
    Store a CAPTURED payment for the order, idempotent by provider payment id.
    An existing row is returned unchanged and the order is not touched again.
    """
    existing = find_payment_by_provider_payment_id(s, provider_payment_id)
    if existing:
        return existing

    from models.orders_store import mark_order_paid

    now = _now()
    who = actor or "system"
    p = Payment(
        order_id=order_id,
        status=PaymentStatus.CAPTURED,
        amount=amount,
        currency=normalize_currency(currency),
        provider_order_id=provider_order_id,
        provider_payment_id=provider_payment_id,
        active=True,
        created_at=now, created_by=who,
        modified_at=now, modified_by=who,
    )
    save_payment(s, p)
    mark_order_paid(s, order_id, now)
    return p


# ----- read helpers (own transaction) ---------------------------------------

def get_payment_by_provider_payment_id(provider_payment_id: str) -> Optional[dict]:
    if not provider_payment_id:
        return None
    with session_scope() as s:
        p = find_payment_by_provider_payment_id(s, provider_payment_id)
        return _to_dict(p) if p else None


def list_payments_for_order(order_id: int) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(select(Payment).where(Payment.order_id == order_id)
                         .order_by(Payment.id)).scalars().all()
        return [_to_dict(p) for p in rows]


# ----- webhook delivery log -------------------------------------------------

def _find_event_id(provider: str, external_event_id: str) -> Optional[int]:
    with session_scope() as s:
        row = s.execute(
            select(PaymentEvent.id).where(
                (PaymentEvent.provider == provider) & (
                    PaymentEvent.external_event_id == external_event_id)
            )
        ).first()
        return int(row[0]) if row else None


def record_webhook_event(provider: str, environment: str, external_event_id: Optional[str],
                         event_type: str, raw_body: bytes | str, signature_ok: bool) -> int:
    """Log a webhook delivery; a redelivered event id returns the first row's id."""
    if external_event_id:
        known = _find_event_id(provider, external_event_id)
        if known:
            return known

    raw_text = raw_body.decode("utf-8", errors="replace") if isinstance(
        raw_body, bytes) else (raw_body or "")
    try:
        with session_scope() as s:
            e = PaymentEvent(
                provider=provider, environment=environment,
                external_event_id=external_event_id, event_type=event_type or "",
                raw=raw_text, signature_ok=1 if signature_ok else 0, received_at=_now(),
            )
            s.add(e)
            s.flush()
            return e.id
    except IntegrityError:
        # concurrent redelivery won the insert
        return _find_event_id(provider, external_event_id) or 0

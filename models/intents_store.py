# models/intents_store.py
"""
Checkout intent persistence.

Functions taking a Session run inside the caller's transaction (that is where
the row locks live). Functions without one open and commit their own
transaction and return plain dicts.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from models.base import session_scope
from models.schema import CheckoutIntent, IntentStatus
from models.payments_store import normalize_currency, to_decimal

logger = logging.getLogger(__name__)

_FIELDS = ("id", "customer_id", "amount", "currency", "provider_order_id",
           "provider_payment_id", "active", "expires_at",
           "created_at", "created_by", "modified_at", "modified_by")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_dict(ci: CheckoutIntent) -> dict:
    out = {c: getattr(ci, c) for c in _FIELDS}
    out["status"] = ci.status
    return out


def _dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


# ----- own-transaction helpers -------------------------------------------------

def create_intent(draft: dict, items: list[dict], *, actor: str = "system",
                  ttl_minutes: int = 120) -> dict:
    """Persist a PENDING intent and commit it before any provider call is made."""
    now = _now()
    with session_scope() as s:
        ci = CheckoutIntent(
            customer_id=draft.get("customerId"),
            order_draft_json=_dumps(draft),
            items_json=_dumps(items or []),
            amount=to_decimal(draft.get("grandTotal")),
            currency=normalize_currency(draft.get("currency")),
            status=IntentStatus.PENDING.value,
            active=True,
            expires_at=now + timedelta(minutes=ttl_minutes),
            created_at=now, created_by=actor,
            modified_at=now, modified_by=actor,
        )
        s.add(ci)
        s.flush()
        logger.info("[CHECKOUT][INTENT][COMMIT] checkoutIntentId=%s amount=%s currency=%s",
                    ci.id, ci.amount, ci.currency)
        return _to_dict(ci)


def attach_provider_order_id(intent_id: int, provider_order_id: str,
                             actor: str = "system") -> None:
    """Link the provider order id to the intent and commit immediately."""
    with session_scope() as s:
        ci = s.get(CheckoutIntent, intent_id)
        if not ci:
            raise ValueError(f"Checkout intent not found: {intent_id}")
        ci.provider_order_id = provider_order_id
        ci.modified_at = _now()
        ci.modified_by = actor
        s.add(ci)
    logger.info("[PAYMENT][ORDER_LINK][COMMIT] checkoutIntentId=%s providerOrderId=%s",
                intent_id, provider_order_id)


def get_intent(intent_id: int) -> Optional[dict]:
    with session_scope() as s:
        ci = s.get(CheckoutIntent, intent_id)
        return _to_dict(ci) if ci else None


def find_intent_by_provider_order_id(provider_order_id: str) -> Optional[dict]:
    """Non-locking lookup, used for pre-checks outside the finalize transaction."""
    if not provider_order_id:
        return None
    with session_scope() as s:
        ci = s.execute(select(CheckoutIntent).where(
            CheckoutIntent.provider_order_id == provider_order_id)).scalars().first()
        return _to_dict(ci) if ci else None


# ----- in-transaction helpers --------------------------------------------------

def lock_intent_by_provider_order_id(s: Session, provider_order_id: str) -> Optional[CheckoutIntent]:
    """SELECT ... FOR UPDATE on the intent; blocks until competing holders finish."""
    stmt = (select(CheckoutIntent)
            .where(CheckoutIntent.provider_order_id == provider_order_id)
            .with_for_update()
            .execution_options(populate_existing=True))
    return s.execute(stmt).scalars().first()


def lock_intent_by_id(s: Session, intent_id: int) -> Optional[CheckoutIntent]:
    stmt = (select(CheckoutIntent)
            .where(CheckoutIntent.id == intent_id)
            .with_for_update()
            .execution_options(populate_existing=True))
    return s.execute(stmt).scalars().first()


def save_intent(s: Session, ci: CheckoutIntent, actor: str | None = None) -> CheckoutIntent:
    ci.modified_at = _now()
    if actor:
        ci.modified_by = actor
    s.add(ci)
    s.flush()
    return ci


def _swap_status(s: Session, intent_id: int, expected: str, new: IntentStatus,
                 actor: str, stale_before: datetime | None = None) -> bool:
    stmt = update(CheckoutIntent).where(
        CheckoutIntent.id == intent_id, CheckoutIntent.status == expected)
    if stale_before is not None:
        stmt = stmt.where(or_(CheckoutIntent.modified_at.is_(None),
                              CheckoutIntent.modified_at < stale_before))
    res = s.execute(
        stmt.values(status=new.value, modified_at=_now(), modified_by=actor)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def claim_intent(s: Session, intent_id: int, actor: str,
                 current: str = IntentStatus.PENDING.value) -> bool:
    """
    PENDING -> CONVERTING. `current` is the raw status read under the lock
    (it may differ from the canonical spelling). False when someone else
    already moved it.
    """
    return _swap_status(s, intent_id, current, IntentStatus.CONVERTING, actor)


def take_over_stale_claim(s: Session, intent_id: int, actor: str,
                          stale_before: datetime) -> bool:
    """Re-claim a CONVERTING intent whose last write is older than `stale_before`."""
    return _swap_status(s, intent_id, IntentStatus.CONVERTING.value, IntentStatus.CONVERTING,
                        actor, stale_before=stale_before)


def release_intent(s: Session, intent_id: int, actor: str) -> bool:
    """CONVERTING -> PENDING, so a later attempt can retry the conversion."""
    return _swap_status(s, intent_id, IntentStatus.CONVERTING.value, IntentStatus.PENDING, actor)


def load_draft(ci: CheckoutIntent) -> tuple[dict, list[dict]]:
    """Decode the stored draft and items; ValueError if either is unusable."""
    try:
        draft = json.loads(ci.order_draft_json or "")
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to parse order draft of intent {ci.id}") from e
    try:
        items = json.loads(ci.items_json or "[]")
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to parse items of intent {ci.id}") from e
    if not isinstance(draft, dict):
        raise ValueError(f"Order draft of intent {ci.id} is not an object")
    if not isinstance(items, list):
        raise ValueError(f"Items of intent {ci.id} are not a list")
    return draft, items

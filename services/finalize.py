# services/finalize.py
"""
Turns a PENDING checkout intent into a paid Order plus a CAPTURED Payment.

Both the browser verify call and the provider webhook end up here, in any
order, possibly at the same time and possibly more than once. Everything
happens in one transaction holding the intent row lock:

  1. lock the intent row and claim it (PENDING -> CONVERTING);
  2. materialize the order, record the payment, mark the intent CONVERTED;
  3. commit.

Any failure (or a dead process) rolls the whole transaction back, so the
intent is durably PENDING again and the next delivery retries it. The claim
is a compare-and-swap on the status column, so two finalizers can never both
convert an intent even where the store ignores FOR UPDATE. A CONVERTING row
whose last write is older than CHECKOUT_CLAIM_LEASE_SECONDS is taken over.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.base import session_scope
from models.intents_store import (
    claim_intent, load_draft, lock_intent_by_id, lock_intent_by_provider_order_id,
    release_intent, save_intent, take_over_stale_claim,
)
from models.orders_store import create_order_as_paid
from models.payments_store import (
    find_payment_by_provider_payment_id, normalize_currency, record_captured_payment,
    to_decimal,
)
from models.schema import CheckoutIntent, IntentStatus
from services.payments.errors import IntentNotFound, InvalidFinalizeRequest
from services.payments.registry import cfg

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_LEASE_SECONDS = 300


class Outcome(str, enum.Enum):
    CONVERTED = "converted"
    ALREADY_CONVERTED = "already_converted"
    IN_PROGRESS = "in_progress"
    SKIPPED = "skipped"
    DUPLICATE_PAYMENT = "duplicate_payment"


@dataclass
class FinalizeResult:
    outcome: Outcome
    intent_id: int
    order_id: Optional[int] = None
    payment_id: Optional[int] = None

    @property
    def converted(self) -> bool:
        return self.outcome is Outcome.CONVERTED


def _require(value, name: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise InvalidFinalizeRequest(f"{name} is required")
    return text


def _parse_amount(captured_amount) -> Optional[Decimal]:
    if captured_amount is None:
        return None
    try:
        amount = to_decimal(captured_amount)
    except ValueError as e:
        raise InvalidFinalizeRequest(str(e)) from None
    if amount < 0:
        raise InvalidFinalizeRequest("captured amount must be >= 0")
    return amount


def _lease_cutoff() -> datetime:
    seconds = int(cfg("CHECKOUT_CLAIM_LEASE_SECONDS") or DEFAULT_CLAIM_LEASE_SECONDS)
    return datetime.now(timezone.utc) - timedelta(seconds=seconds)


def _skip_outcome(status: IntentStatus | None) -> Outcome:
    if status is IntentStatus.CONVERTED:
        return Outcome.ALREADY_CONVERTED
    if status is IntentStatus.CONVERTING:
        return Outcome.IN_PROGRESS
    return Outcome.SKIPPED


def _skipped(s: Session, outcome: Outcome, intent_id: int, payment_ref: str) -> FinalizeResult:
    p = find_payment_by_provider_payment_id(s, payment_ref)
    return FinalizeResult(outcome, intent_id,
                          order_id=p.order_id if p else None,
                          payment_id=p.id if p else None)


def _mark_converted(s: Session, ci: CheckoutIntent, payment_ref: str, actor: str) -> None:
    ci.status = IntentStatus.CONVERTED.value
    ci.active = False
    ci.provider_payment_id = payment_ref
    save_intent(s, ci, actor)


def _claim(s: Session, ci: CheckoutIntent, order_ref: str, payment_ref: str,
           actor: str) -> Optional[FinalizeResult]:
    """Status check + claim on the locked row. A result means there is nothing to do."""
    status = IntentStatus.parse(ci.status)
    if status is IntentStatus.PENDING:
        claimed = claim_intent(s, ci.id, actor, current=ci.status)
    elif status is IntentStatus.CONVERTING:
        claimed = take_over_stale_claim(s, ci.id, actor, _lease_cutoff())
        if claimed:
            logger.warning("[PAYMENT][FINALIZE][TAKEOVER] stale CONVERTING claim | "
                           "providerOrderId=%s lastModifiedBy=%s", order_ref, ci.modified_by)
    else:
        outcome = _skip_outcome(status)
        logger.info("[PAYMENT][FINALIZE][SKIP] %s | providerOrderId=%s status=%r",
                    outcome.value, order_ref, ci.status)
        return _skipped(s, outcome, ci.id, payment_ref)

    if not claimed:
        current = s.execute(select(CheckoutIntent.status).where(
            CheckoutIntent.id == ci.id)).scalar_one_or_none()
        outcome = _skip_outcome(IntentStatus.parse(current))
        logger.info("[PAYMENT][FINALIZE][SKIP] claim not taken (%s) | providerOrderId=%s",
                    outcome.value, order_ref)
        return _skipped(s, outcome, ci.id, payment_ref)
    return None


def _convert(s: Session, intent_id: int, order_ref: str, payment_ref: str,
             amount: Optional[Decimal], currency: Optional[str], actor: str) -> FinalizeResult:
    # reload: the claim was a bulk UPDATE the identity map has not seen
    ci = lock_intent_by_id(s, intent_id)
    if ci is None or IntentStatus.parse(ci.status) is not IntentStatus.CONVERTING:
        raise RuntimeError(
            f"Checkout intent {intent_id} left CONVERTING while being finalized")

    draft, items = load_draft(ci)

    existing = find_payment_by_provider_payment_id(s, payment_ref)
    if existing is not None:
        if existing.provider_order_id == order_ref:
            # payment already landed for this very intent: just finish the intent
            _mark_converted(s, ci, payment_ref, actor)
            logger.info("[PAYMENT][FINALIZE][RECOVER] providerOrderId=%s providerPaymentId=%s orderId=%s",
                        order_ref, payment_ref, existing.order_id)
            return FinalizeResult(Outcome.CONVERTED, intent_id, existing.order_id, existing.id)

        release_intent(s, intent_id, actor)
        logger.warning("[PAYMENT][FINALIZE][DUPLICATE] providerPaymentId=%s already recorded for "
                       "providerOrderId=%s orderId=%s; intent %s left PENDING",
                       payment_ref, existing.provider_order_id, existing.order_id, intent_id)
        return FinalizeResult(Outcome.DUPLICATE_PAYMENT, intent_id, existing.order_id, existing.id)

    order = create_order_as_paid(s, draft, items, provider_order_id=order_ref,
                                 provider_payment_id=payment_ref, actor=actor)

    payment = record_captured_payment(
        s,
        order_id=order.id,
        provider_order_id=order_ref,
        provider_payment_id=payment_ref,
        currency=normalize_currency(currency),
        amount=amount if amount is not None else order.grand_total,
        actor=actor,
    )

    _mark_converted(s, ci, payment_ref, actor)
    logger.info("[PAYMENT][FINALIZE][OK] providerOrderId=%s providerPaymentId=%s orderId=%s amount=%s %s",
                order_ref, payment_ref, order.id, payment.amount, payment.currency)
    return FinalizeResult(Outcome.CONVERTED, intent_id, order.id, payment.id)


def finalize_captured_payment(provider_order_id: str | None,
                              provider_payment_id: str | None,
                              captured_amount=None,
                              currency: str | None = None,
                              actor: str | None = None) -> FinalizeResult:
    """
    Convert the PENDING intent for `provider_order_id` into a paid order.

    `captured_amount` is what the provider reports as captured; when None
    the materialized order's grand total is recorded. Repeated or concurrent
    calls for the same intent are no-ops returning the already recorded
    payment (if any). Unexpected failures roll back to PENDING and propagate.
    """
    order_ref = _require(provider_order_id, "provider_order_id")
    payment_ref = _require(provider_payment_id, "provider_payment_id")
    amount = _parse_amount(captured_amount)
    who = (actor or "").strip() or "system"

    with session_scope() as s:
        ci = lock_intent_by_provider_order_id(s, order_ref)
        if ci is None:
            raise IntentNotFound(
                f"Checkout intent not found for providerOrderId={order_ref}")

        done = _claim(s, ci, order_ref, payment_ref, who)
        if done is not None:
            return done

        try:
            return _convert(s, ci.id, order_ref, payment_ref, amount, currency, who)
        except Exception:
            logger.exception("[PAYMENT][FINALIZE][ERR] providerOrderId=%s providerPaymentId=%s "
                             "failed; rolled back to PENDING", order_ref, payment_ref)
            raise


def finalize_captured_payment_by_intent_id(checkout_intent_id: int | None,
                                           provider_order_id: str | None,
                                           provider_payment_id: str | None,
                                           captured_amount=None,
                                           currency: str | None = None,
                                           actor: str | None = None) -> FinalizeResult:
    """
    Same as finalize_captured_payment, addressed by our intent id.

    Covers the gap where the provider order was created but its id was never
    committed onto the intent: the id is stored first, then the regular path
    runs. A blank `provider_order_id` is fine when the intent already has one.
    """
    if checkout_intent_id is None:
        raise InvalidFinalizeRequest("checkout_intent_id is required")
    payment_ref = _require(provider_payment_id, "provider_payment_id")
    order_hint = (provider_order_id or "").strip()
    who = (actor or "").strip() or "system"

    with session_scope() as s:
        ci = lock_intent_by_id(s, int(checkout_intent_id))
        if ci is None:
            raise IntentNotFound(f"Checkout intent not found: {checkout_intent_id}")

        if not (ci.provider_order_id or "").strip():
            ci.provider_order_id = _require(order_hint, "provider_order_id")
            save_intent(s, ci, who)
            logger.info("[PAYMENT][FINALIZE][LINK] checkoutIntentId=%s providerOrderId=%s",
                        ci.id, ci.provider_order_id)
        elif order_hint and ci.provider_order_id != order_hint:
            logger.warning("[PAYMENT][FINALIZE][LINK] checkoutIntentId=%s stored providerOrderId=%s "
                           "differs from %s; using stored", ci.id, ci.provider_order_id, order_hint)
        order_ref = ci.provider_order_id

    return finalize_captured_payment(order_ref, payment_ref, captured_amount, currency, who)

# services/payments/razorpay_provider.py
"""
Razorpay adapter: order creation over the REST API, checkout signature
checks and webhook parsing.

Configuration (env first, Flask config second):
  RAZORPAY_KEY_ID                public key id, also handed to the browser
  RAZORPAY_KEY_SECRET            API secret (Basic auth + checkout signatures)
  RAZORPAY_WEBHOOK_SECRET        secret of the live dashboard webhook
  RAZORPAY_WEBHOOK_SECRET_TEST   secret of the test dashboard webhook
  RAZORPAY_WEBHOOK_SECRET_STAGE  secret of the stage webhook
  RAZORPAY_BASE_URL              default: https://api.razorpay.com/v1
  RAZORPAY_TIMEOUT               seconds (default 15)
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict

import requests

from models.payments_store import from_minor_units
from services.payments.base import ProviderOrder, WebhookEvent
from services.payments.errors import GatewayError
from services.payments.registry import cfg
from services.payments.signature import verify, verify_checkout

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"
SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"

_WEBHOOK_SECRET_KEYS = {
    "live": "RAZORPAY_WEBHOOK_SECRET",
    "test": "RAZORPAY_WEBHOOK_SECRET_TEST",
    "stage": "RAZORPAY_WEBHOOK_SECRET_STAGE",
}


def _intent_id_from_notes(notes: Any) -> int | None:
    # Razorpay sends an empty list when an entity has no notes
    if not isinstance(notes, dict):
        return None
    raw = str(notes.get("checkoutIntentId") or "").strip()
    return int(raw) if raw.isdigit() else None


class RazorpayProvider:
    name = "razorpay"

    def __init__(self) -> None:
        self.base_url = (cfg("RAZORPAY_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.key_id = cfg("RAZORPAY_KEY_ID") or ""
        self.key_secret = cfg("RAZORPAY_KEY_SECRET") or ""
        self.timeout = int(cfg("RAZORPAY_TIMEOUT") or "15")

    def public_key_id(self) -> str:
        return self.key_id

    # ----- outbound ---------------------------------------------------------

    def create_order(self, *, amount_minor: int, currency: str, receipt: str,
                     notes: Dict[str, str] | None = None,
                     payment_capture: bool = True) -> ProviderOrder:
        if not self.key_id or not self.key_secret:
            raise GatewayError("Razorpay credentials are not configured")

        url = f"{self.base_url}/orders"
        body = {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1 if payment_capture else 0,
            "notes": notes or {},
        }
        logger.info("[PAYMENT][RZP][ORDER_CREATE] receipt=%s amount=%s currency=%s capture=%s",
                    receipt, amount_minor, currency, payment_capture)

        try:
            r = requests.post(url, json=body, auth=(self.key_id, self.key_secret),
                              timeout=self.timeout)
            r.raise_for_status()
            js = r.json()
        except requests.RequestException as e:
            logger.error("[PAYMENT][RZP][ORDER_CREATE][FAIL] receipt=%s err=%s", receipt, e)
            raise GatewayError("Failed to create Razorpay order") from e
        except ValueError as e:
            raise GatewayError("Razorpay returned a non-JSON response") from e

        order_id = js.get("id") if isinstance(js, dict) else None
        if not order_id:
            logger.error("[PAYMENT][RZP][ORDER_CREATE][FAIL] receipt=%s no order id in response",
                         receipt)
            raise GatewayError("Razorpay response has no order id")

        logger.info("[PAYMENT][RZP][ORDER_CREATE][OK] providerOrderId=%s receipt=%s",
                    order_id, receipt)
        return ProviderOrder(provider_order_id=str(order_id), amount_minor=int(amount_minor),
                             currency=currency, receipt=receipt, raw=js)

    # ----- inbound ----------------------------------------------------------

    def verify_checkout_signature(self, provider_order_id: str, provider_payment_id: str,
                                  signature: str | None) -> bool:
        return verify_checkout(self.key_secret, provider_order_id, provider_payment_id, signature)

    def webhook_secret(self, environment: str) -> str | None:
        key = _WEBHOOK_SECRET_KEYS.get(environment)
        return (cfg(key) or None) if key else None

    def parse_webhook(self, environment: str, body: bytes, headers) -> WebhookEvent:
        signature = headers.get(SIGNATURE_HEADER, "")
        ok = verify(self.webhook_secret(environment), body or b"", signature)

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            if ok:
                raise ValueError("Webhook body is not valid JSON")
            payload = {}
        if not isinstance(payload, dict):
            if ok:
                raise ValueError("Webhook body is not a JSON object")
            payload = {}

        entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
        amount = entity.get("amount")
        return WebhookEvent(
            provider=self.name,
            environment=environment,
            external_event_id=headers.get(EVENT_ID_HEADER) or None,
            event_type=str(payload.get("event") or ""),
            provider_order_id=str(entity.get("order_id") or ""),
            provider_payment_id=str(entity.get("id") or ""),
            amount=from_minor_units(amount) if isinstance(amount, int) else None,
            currency=entity.get("currency"),
            checkout_intent_id=_intent_id_from_notes(entity.get("notes")),
            raw=payload,
            signature_ok=ok,
        )

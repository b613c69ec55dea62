# services/payments/base.py
"""
Abstract interface + simple event model for payments.
Adapters must implement PaymentProvider.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict, Any, Protocol


@dataclass
class ProviderOrder:
    provider_order_id: str        # provider's order id (e.g. order_XXXX)
    amount_minor: int             # paise
    currency: str
    receipt: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    provider: str                 # 'razorpay'
    environment: str              # 'live' | 'test' | 'stage'
    external_event_id: Optional[str]
    event_type: str               # e.g. 'payment.captured'
    provider_order_id: str
    provider_payment_id: str
    amount: Optional[Decimal]     # major units, None if absent
    currency: Optional[str]
    checkout_intent_id: Optional[int]   # from notes, when we put it there
    raw: Dict[str, Any]
    signature_ok: bool

    @property
    def is_capture(self) -> bool:
        return self.event_type in ("payment.captured", "order.paid")


class PaymentProvider(Protocol):
    name: str

    def public_key_id(self) -> str:
        """Key id the browser checkout widget is initialised with."""

    def create_order(self, *, amount_minor: int, currency: str, receipt: str,
                     notes: Dict[str, str] | None = None,
                     payment_capture: bool = True) -> ProviderOrder:
        """
        Create the provider-side order a checkout is paid against.
        Raise GatewayError on any non-success response.
        """

    def verify_checkout_signature(self, provider_order_id: str, provider_payment_id: str,
                                  signature: str | None) -> bool:
        """Check the signature the checkout widget hands back to the browser."""

    def webhook_secret(self, environment: str) -> str | None:
        """Secret configured for the webhook of that environment, if any."""

    def parse_webhook(self, environment: str, body: bytes, headers) -> WebhookEvent:
        """
        Verify signature and parse the provider webhook into WebhookEvent.
        Must mark signature_ok=True only if verification passes.
        Raise ValueError on malformed payloads; otherwise return event.
        """

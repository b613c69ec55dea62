# services/payments/signature.py
"""
HMAC-SHA256 signatures used by the payment provider.

- Checkout callback: hex HMAC of "<provider order id>|<provider payment id>"
  keyed with the API key secret.
- Webhooks: hex HMAC of the raw request body keyed with the webhook secret
  of the environment (live/test/stage) the hook was configured in.
"""
from __future__ import annotations
import hashlib
import hmac


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def hmac_sha256_hex(secret: str | bytes, message: str | bytes) -> str:
    return hmac.new(_as_bytes(secret), _as_bytes(message), hashlib.sha256).hexdigest()


def checkout_message(provider_order_id: str, provider_payment_id: str) -> str:
    return f"{provider_order_id}|{provider_payment_id}"


def verify(secret: str | bytes | None, message: str | bytes, signature: str | bytes | None) -> bool:
    """
    True only if `signature` is the HMAC of `message` under `secret`.

    The comparison runs over bytes with hmac.compare_digest, so its duration
    does not depend on where the first differing byte is.
    """
    if not secret or not signature:
        return False
    expected = hmac_sha256_hex(secret, message).encode("ascii")
    presented = _as_bytes(signature)
    return hmac.compare_digest(expected, presented)


def verify_checkout(secret: str | None, provider_order_id: str, provider_payment_id: str,
                    signature: str | None) -> bool:
    return verify(secret, checkout_message(provider_order_id, provider_payment_id), signature)

# services/payments/registry.py
import os
from flask import current_app, has_app_context


def cfg(key: str, default: str | None = None) -> str | None:
    """Env first, then Flask config."""
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def get_provider():
    name = (cfg("PAYMENT_PROVIDER") or "razorpay").lower()
    if name == "razorpay":
        from services.payments.razorpay_provider import RazorpayProvider
        return RazorpayProvider()
    raise RuntimeError(f"Unknown PAYMENT_PROVIDER: {name}")

# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Checkout / finalize ---
CHECKOUT_STARTED = Counter("checkout_started_total", "Checkout intents created", [
                           "outcome"], registry=APP_REGISTRY)
FINALIZE_OUTCOMES = Counter("checkout_finalize_total", "Finalize attempts by outcome", [
                            "outcome", "source"], registry=APP_REGISTRY)
FINALIZE_LATENCY = Histogram(
    "checkout_finalize_duration_seconds", "Finalize latency (seconds)",
    ["source"], registry=APP_REGISTRY,
)

# --- Payments / Webhook ---
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook events", ["provider", "event", "outcome"], registry=APP_REGISTRY
)
SIGNATURE_FAILURES = Counter(
    "payments_signature_failures_total", "Rejected signatures", ["surface"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for outcome in ("converted", "already_converted", "in_progress", "skipped",
                    "duplicate_payment", "error"):
        FINALIZE_OUTCOMES.labels(outcome=outcome, source="verify").inc(0)
        FINALIZE_OUTCOMES.labels(outcome=outcome, source="webhook").inc(0)
    for surface in ("verify", "webhook"):
        SIGNATURE_FAILURES.labels(surface=surface).inc(0)
    CHECKOUT_STARTED.labels(outcome="ok").inc(0)
    CHECKOUT_STARTED.labels(outcome="gateway_error").inc(0)
    WEBHOOK_EVENTS.labels(
        provider="razorpay", event="payment_captured", outcome="ok").inc(0)

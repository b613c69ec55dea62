# services/payments/errors.py


class InvalidFinalizeRequest(ValueError):
    """Missing or blank identifiers; nothing was read or written."""


class IntentNotFound(LookupError):
    """No checkout intent matches the given identifier."""


class GatewayError(RuntimeError):
    """The payment provider rejected or failed an outbound call."""

# models/pg_enums.py
"""
Postgres enum types used by the schema.

PG_ENUMS maps the database type name to the Python enum that backs it. It is
built once at import and is read-only; columns get their SQLAlchemy type from
pg_enum() so the type name and the Python class can never drift apart.
"""
from __future__ import annotations
import enum
from types import MappingProxyType

from sqlalchemy import Enum


class OrderStatus(str, enum.Enum):
    ORDERED = "ORDERED"
    DISPATCHED = "DISPATCHED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    RETURNED_REFUNDED = "RETURNED_REFUNDED"


class PaymentStatus(str, enum.Enum):
    CREATED = "CREATED"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


PG_ENUMS = MappingProxyType({
    "order_status_enum": OrderStatus,
    "payment_status_enum": PaymentStatus,
})


def pg_enum(type_name: str) -> Enum:
    """SQLAlchemy column type for a registered Postgres enum (VARCHAR elsewhere)."""
    try:
        enum_cls = PG_ENUMS[type_name]
    except KeyError:
        raise KeyError(f"Unknown postgres enum type: {type_name}") from None
    return Enum(enum_cls, name=type_name, native_enum=True, validate_strings=True)


def enum_for_type(type_name: str) -> type[enum.Enum] | None:
    return PG_ENUMS.get(type_name)

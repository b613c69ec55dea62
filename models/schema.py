# models/schema.py
from __future__ import annotations
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer,
    Numeric, String, Text, UniqueConstraint,
)
from models.base import Base
from models.pg_enums import OrderStatus, PaymentStatus, pg_enum


class IntentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONVERTING = "CONVERTING"
    CONVERTED = "CONVERTED"

    @classmethod
    def parse(cls, raw) -> Optional["IntentStatus"]:
        """Case/whitespace-insensitive parse; None for anything unknown."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "").strip().upper())
        except ValueError:
            return None


# --- CHECKOUT INTENTS

class CheckoutIntent(Base):
    """Server-side snapshot of a checkout, turned into an Order only after capture."""
    __tablename__ = "checkout_intent"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int | None] = mapped_column(Integer)

    # serialized order header + line items, frozen at intent creation
    order_draft_json: Mapped[str] = mapped_column(Text, nullable=False)
    items_json: Mapped[str] = mapped_column(Text, nullable=False)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(
        String(8), nullable=False, default="INR")

    provider_order_id: Mapped[str | None] = mapped_column(String(64))
    provider_payment_id: Mapped[str | None] = mapped_column(String(100))

    # raw text; read through IntentStatus.parse so unknown values stay loadable
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=IntentStatus.PENDING.value)
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64))
    modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    modified_by: Mapped[str | None] = mapped_column(String(64))

    __table_args__ = (
        UniqueConstraint("provider_order_id",
                         name="uq_checkout_intent_provider_order_id"),
        CheckConstraint("amount >= 0", name="ck_checkout_intent_amount_ge_0"),
    )


Index("idx_checkout_intent_status", CheckoutIntent.status)


# --- ORDERS

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    public_code: Mapped[str | None] = mapped_column(String(16), unique=True)
    customer_id: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[OrderStatus] = mapped_column(
        pg_enum("order_status_enum"), nullable=False, default=OrderStatus.ORDERED)

    items_subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    shipping_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="INR")

    # shipping snapshot
    ship_name: Mapped[str | None] = mapped_column(String(120))
    ship_phone: Mapped[str | None] = mapped_column(String(32))
    ship_line1: Mapped[str | None] = mapped_column(String(255))
    ship_line2: Mapped[str | None] = mapped_column(String(255))
    ship_district_id: Mapped[int | None] = mapped_column(Integer)
    ship_state_id: Mapped[int | None] = mapped_column(Integer)
    ship_pincode: Mapped[str | None] = mapped_column(String(16))
    ship_country_id: Mapped[int | None] = mapped_column(Integer)

    order_notes: Mapped[str | None] = mapped_column(Text)
    payment_method: Mapped[str | None] = mapped_column(String(32))
    provider_order_id: Mapped[str | None] = mapped_column(String(100))
    provider_payment_id: Mapped[str | None] = mapped_column(String(100))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(120))
    modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    modified_by: Mapped[str | None] = mapped_column(String(120))

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("grand_total >= 0", name="ck_orders_grand_total_ge_0"),
    )


Index("idx_orders_provider_order_id", Order.provider_order_id)


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int | None] = mapped_column(Integer)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_slug: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"))
    options_json: Mapped[str | None] = mapped_column(Text)
    options_text: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(120))

    order: Mapped[Order] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_gt_0"),
        Index("idx_order_items_order", "order_id"),
    )


# --- PAYMENTS

class Payment(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "orders.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        pg_enum("payment_status_enum"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)  # 3-letter
    provider_order_id: Mapped[str | None] = mapped_column(String(100))
    provider_payment_id: Mapped[str] = mapped_column(
        String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(120))
    modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    modified_by: Mapped[str | None] = mapped_column(String(120))
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        # the idempotency boundary: one row per real-world charge
        UniqueConstraint("provider_payment_id",
                         name="uq_payments_provider_payment_id"),
    )


Index("idx_payments_order", Payment.order_id)


class PaymentEvent(Base):
    __tablename__ = "payment_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    environment: Mapped[str] = mapped_column(String(16), nullable=False)
    external_event_id: Mapped[str | None] = mapped_column(String)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    signature_ok: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("provider", "external_event_id",
                         name="uq_paymentevents_provider_external"),
        CheckConstraint("signature_ok IN (0,1)",
                        name="ck_paymentevents_signature_ok"),
    )

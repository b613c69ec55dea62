"""checkout finalization tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:44.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ("ORDERED", "DISPATCHED", "DELIVERED",
                  "CANCELLED", "REFUNDED", "RETURNED_REFUNDED")
PAYMENT_STATUSES = ("CREATED", "AUTHORIZED", "CAPTURED", "FAILED", "REFUNDED")


def _enum(name, values):
    if op.get_bind().dialect.name == "postgresql":
        return postgresql.ENUM(*values, name=name, create_type=False)
    return sa.Enum(*values, name=name)


def upgrade():
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(*ORDER_STATUSES, name="order_status_enum").create(
            bind, checkfirst=True)
        postgresql.ENUM(*PAYMENT_STATUSES, name="payment_status_enum").create(
            bind, checkfirst=True)

    op.create_table(
        "checkout_intent",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer()),
        sa.Column("order_draft_json", sa.Text(), nullable=False),
        sa.Column("items_json", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("provider_order_id", sa.String(64)),
        sa.Column("provider_payment_id", sa.String(100)),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("modified_at", sa.DateTime(timezone=True)),
        sa.Column("modified_by", sa.String(64)),
        sa.UniqueConstraint("provider_order_id",
                            name="uq_checkout_intent_provider_order_id"),
        sa.CheckConstraint(
            "amount >= 0", name="ck_checkout_intent_amount_ge_0"),
    )
    op.create_index("idx_checkout_intent_status",
                    "checkout_intent", ["status"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("public_code", sa.String(16), unique=True),
        sa.Column("customer_id", sa.Integer()),
        sa.Column("status", _enum("order_status_enum",
                  ORDER_STATUSES), nullable=False),
        sa.Column("items_subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("shipping_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("grand_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("ship_name", sa.String(120)),
        sa.Column("ship_phone", sa.String(32)),
        sa.Column("ship_line1", sa.String(255)),
        sa.Column("ship_line2", sa.String(255)),
        sa.Column("ship_district_id", sa.Integer()),
        sa.Column("ship_state_id", sa.Integer()),
        sa.Column("ship_pincode", sa.String(16)),
        sa.Column("ship_country_id", sa.Integer()),
        sa.Column("order_notes", sa.Text()),
        sa.Column("payment_method", sa.String(32)),
        sa.Column("provider_order_id", sa.String(100)),
        sa.Column("provider_payment_id", sa.String(100)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(120)),
        sa.Column("modified_at", sa.DateTime(timezone=True)),
        sa.Column("modified_by", sa.String(120)),
        sa.CheckConstraint("grand_total >= 0",
                           name="ck_orders_grand_total_ge_0"),
    )
    op.create_index("idx_orders_provider_order_id",
                    "orders", ["provider_order_id"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey(
            "orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer()),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_slug", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("options_json", sa.Text()),
        sa.Column("options_text", sa.Text()),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(120)),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_gt_0"),
    )
    op.create_index("idx_order_items_order", "order_items", ["order_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey(
            "orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", _enum("payment_status_enum",
                  PAYMENT_STATUSES), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("provider_order_id", sa.String(100)),
        sa.Column("provider_payment_id", sa.String(100), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(120)),
        sa.Column("modified_at", sa.DateTime(timezone=True)),
        sa.Column("modified_by", sa.String(120)),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        sa.UniqueConstraint("provider_payment_id",
                            name="uq_payments_provider_payment_id"),
    )
    op.create_index("idx_payments_order", "payments", ["order_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("environment", sa.String(16), nullable=False),
        sa.Column("external_event_id", sa.String()),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("signature_ok", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider", "external_event_id",
                            name="uq_paymentevents_provider_external"),
        sa.CheckConstraint("signature_ok IN (0,1)",
                           name="ck_paymentevents_signature_ok"),
    )


def downgrade():
    op.drop_table("payment_events")
    op.drop_index("idx_payments_order", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_order_items_order", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("idx_orders_provider_order_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("idx_checkout_intent_status", table_name="checkout_intent")
    op.drop_table("checkout_intent")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(name="payment_status_enum").drop(bind, checkfirst=True)
        postgresql.ENUM(name="order_status_enum").drop(bind, checkfirst=True)

"""create cycle billing tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_OPEN_ORDER_PREDICATE = sa.text("status IN ('PENDING', 'CONFIRMED', 'IN_PREPARATION')")


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("zone_id", sa.Uuid(), nullable=True),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customer_name", "customer", ["name"])
    op.create_index("ix_customer_zone", "customer", ["zone_id"])

    op.create_table(
        "subscription_plan",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("cycle_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "subscription_plan_product",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("plan_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plan.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "product_id", name="uq_subscription_plan_product"),
    )
    op.create_index("ix_subscription_plan_product_plan", "subscription_plan_product", ["plan_id"])

    op.create_table(
        "subscription",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("plan_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="ACTIVE"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("cancellation_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plan.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscription_customer", "subscription", ["customer_id"])
    op.create_index("ix_subscription_status", "subscription", ["status"])

    op.create_table(
        "subscription_cycle",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=False),
        sa.Column("cycle_number", sa.Integer(), nullable=False),
        sa.Column("cycle_start", sa.Date(), nullable=False),
        sa.Column("cycle_end", sa.Date(), nullable=False),
        sa.Column("payment_due_date", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("pending_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("credit_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("is_overdue", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("late_fee_applied", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("late_fee_percentage", sa.Numeric(5, 4), nullable=True),
        sa.Column("notes", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("cycle_end >= cycle_start", name="ck_subscription_cycle_window"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscription.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id", "cycle_number", name="uq_subscription_cycle_number"),
    )
    op.create_index("ix_subscription_cycle_window", "subscription_cycle", ["subscription_id", "cycle_start", "cycle_end"])
    op.create_index("ix_subscription_cycle_due", "subscription_cycle", ["payment_due_date"])

    op.create_table(
        "subscription_cycle_detail",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("cycle_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("planned_quantity", sa.Integer(), nullable=False),
        sa.Column("delivered_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_balance", sa.Integer(), nullable=False),
        sa.CheckConstraint("delivered_quantity >= 0", name="ck_subscription_cycle_detail_delivered_nonnegative"),
        sa.CheckConstraint("remaining_balance >= 0", name="ck_subscription_cycle_detail_remaining_nonnegative"),
        sa.ForeignKeyConstraint(["cycle_id"], ["subscription_cycle.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cycle_id", "product_id", name="uq_subscription_cycle_detail_product"),
    )

    op.create_table(
        "cycle_payment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("cycle_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_cycle_payment_amount_positive"),
        sa.ForeignKeyConstraint(["cycle_id"], ["subscription_cycle.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cycle_payment_cycle", "cycle_payment", ["cycle_id", "payment_date"])

    op.create_table(
        "collection_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=True),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("scheduled_delivery_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("order_type", sa.String(length=32), nullable=False, server_default="COLLECTION"),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("is_automated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscription.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_collection_order_open_customer_day",
        "collection_order",
        ["customer_id", "order_date"],
        unique=True,
        postgresql_where=_OPEN_ORDER_PREDICATE,
    )
    op.create_index("ix_collection_order_date_status", "collection_order", ["order_date", "status"])

    op.create_table(
        "collection_order_cycle",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("cycle_id", sa.Uuid(), nullable=False),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["collection_order.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cycle_id"], ["subscription_cycle.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cycle_id"),
    )
    op.create_index("ix_collection_order_cycle_order", "collection_order_cycle", ["order_id"])

    op.create_table(
        "driver",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("zone_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vehicle",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "route_sheet",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("driver_id", sa.Uuid(), nullable=False),
        sa.Column("vehicle_id", sa.Uuid(), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("zone_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["driver_id"], ["driver.id"]),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicle.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_route_sheet_date_zone", "route_sheet", ["delivery_date", "zone_id"])

    op.create_table(
        "route_sheet_detail",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("route_sheet_id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("delivery_status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("reschedule_date", sa.Date(), nullable=True),
        sa.Column("rescheduled_on", sa.Date(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("retry_count >= 0", name="ck_route_sheet_detail_retry_nonnegative"),
        sa.ForeignKeyConstraint(["route_sheet_id"], ["route_sheet.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_id"], ["collection_order.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_route_sheet_detail_status", "route_sheet_detail", ["delivery_status", "reschedule_date"])

    op.create_table(
        "cancellation_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=False),
        sa.Column("scheduled_collection_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("route_sheet_id", sa.Uuid(), nullable=True),
        sa.Column("rescheduled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_rescheduled_on", sa.Date(), nullable=True),
        sa.Column("notes", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("rescheduled_count >= 0", name="ck_cancellation_order_rescheduled_nonnegative"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscription.id"]),
        sa.ForeignKeyConstraint(["route_sheet_id"], ["route_sheet.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cancellation_order_status_date", "cancellation_order", ["status", "scheduled_collection_date"])


def downgrade() -> None:
    op.drop_index("ix_cancellation_order_status_date", table_name="cancellation_order")
    op.drop_table("cancellation_order")
    op.drop_index("ix_route_sheet_detail_status", table_name="route_sheet_detail")
    op.drop_table("route_sheet_detail")
    op.drop_index("ix_route_sheet_date_zone", table_name="route_sheet")
    op.drop_table("route_sheet")
    op.drop_table("vehicle")
    op.drop_table("driver")
    op.drop_index("ix_collection_order_cycle_order", table_name="collection_order_cycle")
    op.drop_table("collection_order_cycle")
    op.drop_index("ix_collection_order_date_status", table_name="collection_order")
    op.drop_index("uq_collection_order_open_customer_day", table_name="collection_order")
    op.drop_table("collection_order")
    op.drop_index("ix_cycle_payment_cycle", table_name="cycle_payment")
    op.drop_table("cycle_payment")
    op.drop_table("subscription_cycle_detail")
    op.drop_index("ix_subscription_cycle_due", table_name="subscription_cycle")
    op.drop_index("ix_subscription_cycle_window", table_name="subscription_cycle")
    op.drop_table("subscription_cycle")
    op.drop_index("ix_subscription_status", table_name="subscription")
    op.drop_index("ix_subscription_customer", table_name="subscription")
    op.drop_table("subscription")
    op.drop_index("ix_subscription_plan_product_plan", table_name="subscription_plan_product")
    op.drop_table("subscription_plan_product")
    op.drop_table("subscription_plan")
    op.drop_index("ix_customer_zone", table_name="customer")
    op.drop_index("ix_customer_name", table_name="customer")
    op.drop_table("customer")

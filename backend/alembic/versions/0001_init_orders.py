"""init order tables

Revision ID: 0001_init_orders
Revises: 
Create Date: 2026-10-18T09:12:40.518302Z
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init_orders"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUSES = (
    "pending", "paid", "provisioning", "completed", "active",
    "depleted", "expired", "failed", "refunded",
)

def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_test_account", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "plans",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("region_code", sa.String(length=16), nullable=True),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("data_gb", sa.Float(), nullable=False),
        sa.Column("validity_days", sa.Integer(), nullable=False),
        sa.Column("retail_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.String(length=64), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.Enum(*ORDER_STATUSES, name="orderstatus"), nullable=False, server_default="pending"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("is_topup", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("parent_order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("is_test_account", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("processor_ref", sa.String(length=128), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("partner_order_ref", sa.String(length=64), nullable=True),
        sa.Column("iccid", sa.String(length=32), nullable=True),
        sa.Column("transaction_ref", sa.String(length=64), nullable=True),
        sa.Column("smdp_address", sa.String(length=255), nullable=True),
        sa.Column("activation_code", sa.String(length=255), nullable=True),
        sa.Column("install_url", sa.String(length=512), nullable=True),
        sa.Column("data_used_bytes", sa.BigInteger(), nullable=True),
        sa.Column("data_remaining_bytes", sa.BigInteger(), nullable=True),
        sa.Column("last_usage_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bonus_bytes_credited", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("bonus_bytes_in_partner_total", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.String(length=255), nullable=True),
        sa.Column("processor_refund_ref", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_plan_id", "orders", ["plan_id"])
    op.create_index("ix_orders_partner_order_ref", "orders", ["partner_order_ref"])
    op.create_index("ix_orders_iccid", "orders", ["iccid"])
    op.create_index("ix_orders_transaction_ref", "orders", ["transaction_ref"])
    op.create_index("ix_orders_status_changed", "orders", ["status", "status_changed_at"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source", sa.Enum("payments", "esim_access", name="notificationsource"), nullable=False),
        sa.Column("notification_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column(
            "effect",
            sa.Enum("accepted", "applied", "ignored", "illegal_transition", "error", name="notificationeffect"),
            nullable=False,
            server_default="accepted",
        ),
        sa.Column("detail", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("source", "notification_id", name="uq_idempotency_source_notification"),
    )

def downgrade():
    op.drop_table("idempotency_records")
    op.drop_index("ix_orders_status_changed", table_name="orders")
    op.drop_index("ix_orders_transaction_ref", table_name="orders")
    op.drop_index("ix_orders_iccid", table_name="orders")
    op.drop_index("ix_orders_partner_order_ref", table_name="orders")
    op.drop_index("ix_orders_plan_id", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
    op.drop_table("plans")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    sa.Enum(name="notificationeffect").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="notificationsource").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="orderstatus").drop(op.get_bind(), checkfirst=True)

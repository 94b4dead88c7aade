"""create calendar, billing, payment, credit and refund tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "calendar_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("meal_plan_name", sa.String(length=128), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("extra_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("weekdays_only", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("selected_days", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_calendar_order_customer", "calendar_order", ["customer_id"])

    op.create_table(
        "calendar_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["calendar_order.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "entry_date", name="uq_calendar_entry_order_date"),
    )
    op.create_index("ix_calendar_entry_order_date", "calendar_entry", ["order_id", "entry_date"])

    op.create_table(
        "billing_monthly",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("billing_month", sa.String(length=7), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("credit_applied", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="calculating"),
        sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="unpaid"),
        sa.Column("status_before_paid", sa.String(length=32), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_by", sa.String(length=128), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "billing_month", name="uq_billing_monthly_customer_month"),
    )
    op.create_index("ix_billing_monthly_customer_status", "billing_monthly", ["customer_id", "status"])

    op.create_table(
        "billing_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("monthly_billing_id", sa.Uuid(), nullable=True),
        sa.Column("billing_month", sa.String(length=7), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("applicable_days", sa.Integer(), nullable=False),
        sa.Column("delivered_count", sa.Integer(), nullable=False),
        sa.Column("absent_count", sa.Integer(), nullable=False),
        sa.Column("extra_count", sa.Integer(), nullable=False),
        sa.Column("per_tiffin_price", sa.Numeric(18, 8), nullable=False),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("extra_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="calculating"),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_by", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["calendar_order.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["monthly_billing_id"], ["billing_monthly.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "billing_month", name="uq_billing_order_month"),
    )
    op.create_index("ix_billing_order_customer_month", "billing_order", ["customer_id", "billing_month"])

    op.create_table(
        "payment_record",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("allocation_status", sa.String(length=32), nullable=False, server_default="unallocated"),
        sa.Column("total_allocated", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("excess_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(length=128), nullable=True),
        sa.Column("delete_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_record_customer", "payment_record", ["customer_id", "payment_date"])

    op.create_table(
        "payment_allocation",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("payment_record_id", sa.Uuid(), nullable=False),
        sa.Column("billing_id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("allocation_order", sa.Integer(), nullable=False),
        sa.Column("allocated_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("credit_amount_used", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("balance_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("resulting_status", sa.String(length=32), nullable=False),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["payment_record_id"], ["payment_record.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["billing_id"], ["billing_monthly.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_record_id", "billing_id", name="uq_payment_allocation_payment_billing"),
    )
    op.create_index("ix_payment_allocation_billing", "payment_allocation", ["billing_id"])

    op.create_table(
        "credit_customer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("source_payment_id", sa.Uuid(), nullable=True),
        sa.Column("original_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="available"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["source_payment_id"], ["payment_record.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_customer_status", "credit_customer", ["customer_id", "status"])
    op.create_index("ix_credit_customer_source_payment", "credit_customer", ["source_payment_id"])

    op.create_table(
        "credit_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("credit_id", sa.Uuid(), nullable=False),
        sa.Column("billing_id", sa.Uuid(), nullable=False),
        sa.Column("payment_record_id", sa.Uuid(), nullable=True),
        sa.Column("amount_used", sa.Numeric(12, 2), nullable=False),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["credit_id"], ["credit_customer.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["billing_id"], ["billing_monthly.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payment_record_id"], ["payment_record.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_usage_credit", "credit_usage", ["credit_id"])
    op.create_index("ix_credit_usage_payment", "credit_usage", ["payment_record_id"])

    op.create_table(
        "refund_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("source_type", sa.String(length=16), nullable=False),
        sa.Column("credit_id", sa.Uuid(), nullable=True),
        sa.Column("payment_record_id", sa.Uuid(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("refund_method", sa.String(length=16), nullable=False),
        sa.Column("refund_date", sa.Date(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(length=128), nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=128), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["credit_id"], ["credit_customer.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["payment_record_id"], ["payment_record.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_refund_request_customer_status", "refund_request", ["customer_id", "status"])
    op.create_index("ix_refund_request_credit", "refund_request", ["credit_id"])

    op.create_table(
        "ledger_audit_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ledger_audit_entity", "ledger_audit_entry", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_ledger_audit_entity", table_name="ledger_audit_entry")
    op.drop_table("ledger_audit_entry")

    op.drop_index("ix_refund_request_credit", table_name="refund_request")
    op.drop_index("ix_refund_request_customer_status", table_name="refund_request")
    op.drop_table("refund_request")

    op.drop_index("ix_credit_usage_payment", table_name="credit_usage")
    op.drop_index("ix_credit_usage_credit", table_name="credit_usage")
    op.drop_table("credit_usage")

    op.drop_index("ix_credit_customer_source_payment", table_name="credit_customer")
    op.drop_index("ix_credit_customer_status", table_name="credit_customer")
    op.drop_table("credit_customer")

    op.drop_index("ix_payment_allocation_billing", table_name="payment_allocation")
    op.drop_table("payment_allocation")

    op.drop_index("ix_payment_record_customer", table_name="payment_record")
    op.drop_table("payment_record")

    op.drop_index("ix_billing_order_customer_month", table_name="billing_order")
    op.drop_table("billing_order")

    op.drop_index("ix_billing_monthly_customer_status", table_name="billing_monthly")
    op.drop_table("billing_monthly")

    op.drop_index("ix_calendar_entry_order_date", table_name="calendar_entry")
    op.drop_table("calendar_entry")

    op.drop_index("ix_calendar_order_customer", table_name="calendar_order")
    op.drop_table("calendar_order")

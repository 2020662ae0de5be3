"""order fulfillment core tables

Revision ID: 3c1d5e7a9b20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c1d5e7a9b20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _create_people_and_listings(bind) -> None:
    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists(bind, "listings"):
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("title", sa.String(length=160), nullable=False),
            sa.Column("price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission", sa.Float(), nullable=True),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="active"),
            sa.Column("sold_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("sold_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_listings_seller_id", "listings", ["seller_id"])
        op.create_index("ix_listings_status", "listings", ["status"])


def _create_orders_and_proofs(bind) -> None:
    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=True),
            sa.Column("amount", sa.Float(), nullable=True),
            sa.Column("payment_proof_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=40), nullable=False, server_default="pending_payment_verification"),
            sa.Column("payment_verified_at", sa.DateTime(), nullable=True),
            sa.Column("payment_rejection_reason", sa.String(length=500), nullable=True),
            sa.Column("decided_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
        op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
        op.create_index("ix_orders_listing_id", "orders", ["listing_id"])
        op.create_index("ix_orders_payment_proof_id", "orders", ["payment_proof_id"], unique=True)
        op.create_index("ix_orders_status", "orders", ["status"])

    if not _table_exists(bind, "payment_proofs"):
        op.create_table(
            "payment_proofs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
            sa.Column("buyer_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=True),
            sa.Column("image_ref", sa.String(length=1024), nullable=False, server_default=""),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_verification"),
            sa.Column("rejection_reason", sa.String(length=500), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False),
            sa.Column("verified_at", sa.DateTime(), nullable=True),
            sa.Column("verified_by", sa.Integer(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        for col in ("order_id", "buyer_id", "seller_id", "listing_id", "status", "uploaded_at"):
            op.create_index(f"ix_payment_proofs_{col}", "payment_proofs", [col])


def _create_fulfillment(bind) -> None:
    if not _table_exists(bind, "order_status"):
        op.create_table(
            "order_status",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("payment_proof_id", sa.Integer(), nullable=True),
            sa.Column("buyer_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("buyer_name", sa.String(length=120), nullable=True),
            sa.Column("buyer_phone", sa.String(length=32), nullable=True),
            sa.Column("buyer_email", sa.String(length=255), nullable=True),
            sa.Column("seller_name", sa.String(length=120), nullable=True),
            sa.Column("seller_phone", sa.String(length=32), nullable=True),
            sa.Column("seller_email", sa.String(length=255), nullable=True),
            sa.Column("listing_title", sa.String(length=160), nullable=True),
            sa.Column("listing_price", sa.Float(), nullable=True),
            sa.Column("commission_percent", sa.Float(), nullable=True),
            sa.Column("commission_amount", sa.Float(), nullable=True),
            sa.Column("buyer_price", sa.Float(), nullable=True),
            sa.Column("order_amount", sa.Float(), nullable=True),
            sa.Column("current_step", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("overall_status", sa.String(length=24), nullable=False, server_default="in_progress"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("assigned_admin_id", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.Column("assigned_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("failed_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("order_id", name="uq_order_status_order_id"),
        )
        for col in (
            "payment_proof_id",
            "buyer_id",
            "seller_id",
            "listing_id",
            "current_step",
            "overall_status",
            "assigned_admin_id",
            "created_at",
        ):
            op.create_index(f"ix_order_status_{col}", "order_status", [col])

    if not _table_exists(bind, "order_status_steps"):
        op.create_table(
            "order_status_steps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_status_id", sa.Integer(), sa.ForeignKey("order_status.id"), nullable=False),
            sa.Column("step", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("details", sa.Text(), nullable=False, server_default=""),
            sa.Column("completed_by", sa.Integer(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("order_status_id", "step", name="uq_order_status_step"),
            sa.CheckConstraint("step >= 1 AND step <= 7", name="ck_order_status_step_range"),
        )
        op.create_index("ix_order_status_steps_order_status_id", "order_status_steps", ["order_status_id"])

    if not _table_exists(bind, "seller_transactions"):
        op.create_table(
            "seller_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_status_id", sa.Integer(), sa.ForeignKey("order_status.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=True),
            sa.Column("gross_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission_percent", sa.Float(), nullable=False, server_default="0"),
            sa.Column("net_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="admin_release"),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("processed_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_status_id", name="uq_seller_transactions_order_status"),
        )
        op.create_index("ix_seller_transactions_order_id", "seller_transactions", ["order_id"])
        op.create_index("ix_seller_transactions_seller_id", "seller_transactions", ["seller_id"])
        op.create_index("ix_seller_transactions_created_at", "seller_transactions", ["created_at"])


def _create_support_tables(bind) -> None:
    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="queued"),
            sa.Column("provider", sa.String(length=64), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_kind", "notifications", ["kind"])
        op.create_index("ix_notifications_status", "notifications", ["status"])

    if not _table_exists(bind, "platform_settings"):
        op.create_table(
            "platform_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("commission_percent", sa.Float(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("subject_type", sa.String(length=40), nullable=True),
            sa.Column("subject_id", sa.String(length=64), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("idempotency_key", sa.String(length=180), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_platform_events_event_type", "platform_events", ["event_type"])
        op.create_index("ix_platform_events_actor_user_id", "platform_events", ["actor_user_id"])
        op.create_index("ix_platform_events_subject_type", "platform_events", ["subject_type"])
        op.create_index("ix_platform_events_subject_id", "platform_events", ["subject_id"])
        op.create_index("ix_platform_events_idempotency_key", "platform_events", ["idempotency_key"], unique=True)
        op.create_index("ix_platform_events_created_at", "platform_events", ["created_at"])

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("trigger", sa.String(length=24), nullable=False, server_default="manual"),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
        )
        op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])
        op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"])

    if not _table_exists(bind, "reconciliation_reports"):
        op.create_table(
            "reconciliation_reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("scope", sa.String(length=64), nullable=False, server_default="order_status_sync"),
            sa.Column("summary_json", sa.Text(), nullable=True),
            sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("drift_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_reconciliation_reports_scope", "reconciliation_reports", ["scope"])
        op.create_index("ix_reconciliation_reports_created_at", "reconciliation_reports", ["created_at"])


def upgrade():
    bind = op.get_bind()
    _create_people_and_listings(bind)
    _create_orders_and_proofs(bind)
    _create_fulfillment(bind)
    _create_support_tables(bind)


def downgrade():
    # Keep downgrade non-destructive for drift-safe environments.
    pass

"""initial special collections schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="resident"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "slot_buckets",
        sa.Column("id", sa.String(length=80), primary_key=True),
        sa.Column("item_policy_id", sa.String(length=40), nullable=False),
        sa.Column("date_str", sa.String(length=10), nullable=False),
        sa.Column("start", sa.String(length=5), nullable=False),
        sa.Column("end", sa.String(length=5), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity_total", sa.Integer(), nullable=False),
        sa.Column("capacity_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("item_policy_id", "date_str", "start", name="uq_slot_bucket_item_date_start"),
        sa.CheckConstraint("capacity_reserved >= 0 AND capacity_reserved <= capacity_total", name="ck_slot_bucket_capacity"),
    )
    op.create_index("ix_slot_buckets_item_policy_id", "slot_buckets", ["item_policy_id"], unique=False)
    op.create_index("ix_slot_buckets_date_str", "slot_buckets", ["date_str"], unique=False)

    op.create_table(
        "slot_reservations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("slot_id", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="held"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_slot_reservations_slot_id", "slot_reservations", ["slot_id"], unique=False)

    op.create_table(
        "special_collection_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("request_ref", sa.String(length=20), nullable=False),
        sa.Column("resident_id", sa.String(length=36), nullable=False),
        sa.Column("resident_name", sa.String(length=200), nullable=False),
        sa.Column("owner_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=500), nullable=False),
        sa.Column("district", sa.String(length=120), nullable=False),
        sa.Column("contact_email", sa.String(length=320), nullable=False),
        sa.Column("contact_phone", sa.String(length=40), nullable=False),
        sa.Column("special_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("item_policy_id", sa.String(length=40), nullable=False),
        sa.Column("item_label", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("weight_per_item_kg", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_weight_kg", sa.Numeric(12, 2), nullable=False),
        sa.Column("slot_id", sa.String(length=80), nullable=False),
        sa.Column("slot_starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("slot_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reservation_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("payment_choice", sa.String(length=12), nullable=False, server_default="none"),
        sa.Column("payment_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="not-required"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="LKR"),
        sa.Column("payment_base_charge", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_weight_charge", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_tax_charge", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_reference", sa.String(length=120), nullable=True),
        sa.Column("receipt_url", sa.String(length=512), nullable=True),
        sa.Column("payment_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("billing_id", sa.String(length=36), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("resident_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("authority_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_special_collection_requests_request_ref", "special_collection_requests", ["request_ref"], unique=True)
    op.create_index("ix_special_collection_requests_resident_id", "special_collection_requests", ["resident_id"], unique=False)
    op.create_index("ix_special_collection_requests_slot_id", "special_collection_requests", ["slot_id"], unique=False)
    op.create_index("ix_special_collection_requests_status", "special_collection_requests", ["status"], unique=False)
    op.create_index("ix_special_collection_requests_payment_due_at", "special_collection_requests", ["payment_due_at"], unique=False)

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("provider", sa.String(length=20), nullable=False, server_default="stripe"),
        sa.Column("provider_session_id", sa.String(length=255), nullable=False),
        sa.Column("purpose", sa.String(length=12), nullable=False, server_default="booking"),
        sa.Column("request_id", sa.String(length=36), nullable=False),
        sa.Column("resident_id", sa.String(length=36), nullable=False),
        sa.Column("bill_id", sa.String(length=36), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="LKR"),
        sa.Column("checkout_url", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.String(length=120), nullable=True),
        sa.Column("receipt_url", sa.String(length=512), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_checkout_sessions_provider_session_id", "checkout_sessions", ["provider_session_id"], unique=True)
    op.create_index("ix_checkout_sessions_request_id", "checkout_sessions", ["request_id"], unique=False)
    op.create_index("ix_checkout_sessions_resident_id", "checkout_sessions", ["resident_id"], unique=False)
    op.create_index("ix_checkout_sessions_status", "checkout_sessions", ["status"], unique=False)
    op.create_index("ix_checkout_sessions_expires_at", "checkout_sessions", ["expires_at"], unique=False)

    op.create_table(
        "bills",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_number", sa.String(length=30), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False, server_default=""),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="LKR"),
        sa.Column("category", sa.String(length=30), nullable=False, server_default="special-collection"),
        sa.Column("special_collection_request_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="unpaid"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method", sa.String(length=40), nullable=True),
        sa.Column("payment_reference", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bills_invoice_number", "bills", ["invoice_number"], unique=True)
    op.create_index("ix_bills_user_id", "bills", ["user_id"], unique=False)
    op.create_index("ix_bills_special_collection_request_id", "bills", ["special_collection_request_id"], unique=False)
    op.create_index("ix_bills_status", "bills", ["status"], unique=False)
    op.create_index("ix_bills_due_date", "bills", ["due_date"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="queued"),
        sa.Column("related_request_ref", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"], unique=False)

def downgrade() -> None:
    for table in ("email_logs", "audit_logs", "bills", "checkout_sessions",
                  "special_collection_requests", "slot_reservations", "slot_buckets", "users"):
        op.drop_table(table)

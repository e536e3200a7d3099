"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 09:00:00

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
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("pin", sa.String(6), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "restaurant_tables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), nullable=True),
        sa.Column("table_number", sa.String(20), nullable=False, unique=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("occupied", sa.Boolean(), nullable=False),
        sa.Column("current_session_id", sa.Integer(), nullable=True),
        sa.Column("current_pin", sa.String(4), nullable=True),
    )
    op.create_index("ix_restaurant_tables_id", "restaurant_tables", ["id"])
    op.create_index("ix_restaurant_tables_restaurant_id", "restaurant_tables", ["restaurant_id"])

    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("extra_data", sa.JSON(), nullable=True),
    )
    op.create_index("ix_menu_items_id", "menu_items", ["id"])
    op.create_index("ix_menu_items_category", "menu_items", ["category"])

    op.create_table(
        "dining_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("restaurant_tables.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_by_name", sa.String(255), nullable=True),
        sa.Column("served_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=True),
        sa.Column("final_total", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("payment_requested_at", sa.DateTime(), nullable=True),
        sa.Column("payment_completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_dining_sessions_id", "dining_sessions", ["id"])
    op.create_index("ix_dining_sessions_table_id", "dining_sessions", ["table_id"])
    op.create_index("ix_dining_sessions_served_by", "dining_sessions", ["served_by"])
    op.create_index("idx_dining_sessions_status", "dining_sessions", ["status"])
    op.create_index("idx_dining_sessions_ended", "dining_sessions", ["ended_at"])
    op.create_index(
        "uq_dining_sessions_active_table",
        "dining_sessions",
        ["table_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "diners",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("name_key", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.Column("last_active", sa.DateTime(), nullable=False),
        sa.Column("logout_time", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_diners_id", "diners", ["id"])
    op.create_index("ix_diners_session_id", "diners", ["session_id"])
    op.create_index("idx_diners_last_active", "diners", ["last_active"])
    op.create_index(
        "uq_diners_active_name",
        "diners",
        ["session_id", "name_key"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=False),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("diner_name", sa.String(100), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_shared", sa.Boolean(), nullable=False),
        sa.Column("is_takeaway", sa.Boolean(), nullable=False),
        sa.Column("split_bill_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("voided_at", sa.DateTime(), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_session_id", "orders", ["session_id"])
    op.create_index("ix_orders_menu_item_id", "orders", ["menu_item_id"])
    op.create_index("idx_orders_session_status", "orders", ["session_id", "status"])
    op.create_index("idx_orders_status_created", "orders", ["status", "created_at"])

    op.create_table(
        "split_bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("original_price", sa.Integer(), nullable=False),
        sa.Column("split_count", sa.Integer(), nullable=False),
        sa.Column("split_price", sa.Integer(), nullable=False),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column("shares", sa.JSON(), nullable=False),
        sa.Column("paid_participants", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_split_bills_id", "split_bills", ["id"])
    op.create_index("ix_split_bills_session_id", "split_bills", ["session_id"])
    op.create_index("ix_split_bills_order_id", "split_bills", ["order_id"])

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("diner_name", sa.String(100), nullable=True),
        sa.Column("subtotal", sa.Integer(), nullable=False),
        sa.Column("vat_amount", sa.Integer(), nullable=False),
        sa.Column("tip_amount", sa.Integer(), nullable=False),
        sa.Column("final_total", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_payment_requests_id", "payment_requests", ["id"])
    op.create_index("ix_payment_requests_session_id", "payment_requests", ["session_id"])
    op.create_index("idx_payment_requests_session_status", "payment_requests", ["session_id", "status"])

    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=False),
        sa.Column("payment_request_id", sa.Integer(), sa.ForeignKey("payment_requests.id"), nullable=True),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("diner_name", sa.String(100), nullable=True),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("completed_by", sa.String(255), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_receipts_id", "receipts", ["id"])
    op.create_index("ix_receipts_session_id", "receipts", ["session_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("dining_sessions.id"), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_by", sa.String(255), nullable=True),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_session_id", "notifications", ["session_id"])
    op.create_index("idx_notifications_type_status", "notifications", ["type", "status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("performed_by", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_session_id", "audit_logs", ["session_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "audit_logs",
        "notifications",
        "receipts",
        "payment_requests",
        "split_bills",
        "orders",
        "diners",
        "dining_sessions",
        "menu_items",
        "restaurant_tables",
        "users",
    ):
        op.drop_table(table)

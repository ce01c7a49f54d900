"""Initial schema: users, competitions, orders, tickets, audit_logs.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "competitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_tickets", sa.Integer(), nullable=False),
        sa.Column("max_tickets_per_user", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'DRAFT'")),
        sa.Column("draw_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_draw_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winning_ticket_number", sa.Integer(), nullable=True),
        sa.Column("winner_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_tickets > 0", name="check_total_tickets_positive"),
        sa.CheckConstraint("max_tickets_per_user > 0", name="check_max_tickets_per_user_positive"),
        sa.CheckConstraint("ticket_price >= 0", name="check_ticket_price_non_negative"),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'UPCOMING', 'ACTIVE', 'SOLD_OUT', 'DRAWING', 'COMPLETED', 'CANCELLED')",
            name="check_competition_status",
        ),
    )
    op.create_index("ix_competitions_id", "competitions", ["id"])
    # Storefront listing: WHERE status = ? ORDER BY draw_date
    op.create_index("ix_competitions_status_draw_date", "competitions", ["status", "draw_date"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_number", sa.String(32), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("competition_id", sa.Integer(), sa.ForeignKey("competitions.id"), nullable=False),
        sa.Column("ticket_count", sa.Integer(), nullable=False),
        sa.Column("bonus_ticket_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ticket_numbers", sa.JSON(), nullable=False),
        sa.Column("bonus_ticket_numbers", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'GBP'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("ticket_count > 0", name="check_order_ticket_count_positive"),
        sa.CheckConstraint("bonus_ticket_count >= 0", name="check_order_bonus_count_non_negative"),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'PROCESSING', 'SUCCEEDED', 'FAILED', 'CANCELLED', 'REFUNDED')",
            name="check_order_payment_status",
        ),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_competition_id", "orders", ["competition_id"])
    op.create_index("ix_orders_competition_status", "orders", ["competition_id", "payment_status"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("competition_id", sa.Integer(), sa.ForeignKey("competitions.id"), nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'AVAILABLE'")),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("reserved_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_bonus", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("competition_id", "ticket_number", name="uq_competition_ticket_number"),
        sa.CheckConstraint("ticket_number > 0", name="check_ticket_number_positive"),
        sa.CheckConstraint(
            "status IN ('AVAILABLE', 'RESERVED', 'SOLD', 'FREE_ENTRY')",
            name="check_ticket_status",
        ),
    )
    # Availability counts and lowest-number selection per competition
    op.create_index(
        "ix_tickets_competition_status_number", "tickets", ["competition_id", "status", "ticket_number"]
    )
    # Expiry sweep: WHERE status = 'RESERVED' AND reserved_until <= now()
    op.create_index("ix_tickets_status_reserved_until", "tickets", ["status", "reserved_until"])
    op.create_index("ix_tickets_competition_user", "tickets", ["competition_id", "user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_action_created", "audit_logs", ["action", "created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("tickets")
    op.drop_table("orders")
    op.drop_table("competitions")
    op.drop_table("users")

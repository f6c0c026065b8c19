"""initial donations schema

Revision ID: 0001_donations
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_donations"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("fbclid", sa.String(), nullable=True),
        sa.Column("fbp", sa.String(), nullable=True),
        sa.Column("fbc", sa.String(), nullable=True),
        sa.Column("client_ip_address", sa.String(), nullable=True),
        sa.Column("client_user_agent", sa.String(), nullable=True),
        sa.Column("donor_name", sa.String(), nullable=True),
        sa.Column("donor_email", sa.String(), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=True),
        sa.Column("conversion_sent", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("notification_payload", JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_donations_order_id", "donations", ["order_id"], unique=True)

    op.create_table(
        "conversion_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("donation_id", sa.Integer(), sa.ForeignKey("donations.id"), nullable=False),
        sa.Column("raw_payload", JSON, nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversion_logs_donation_id", "conversion_logs", ["donation_id"])
    op.create_index("ix_conversion_logs_status", "conversion_logs", ["status"])

    op.create_table(
        "payment_failures",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_failures_order_id", "payment_failures", ["order_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_failures_order_id", table_name="payment_failures")
    op.drop_table("payment_failures")
    op.drop_index("ix_conversion_logs_status", table_name="conversion_logs")
    op.drop_index("ix_conversion_logs_donation_id", table_name="conversion_logs")
    op.drop_table("conversion_logs")
    op.drop_index("ix_donations_order_id", table_name="donations")
    op.drop_table("donations")

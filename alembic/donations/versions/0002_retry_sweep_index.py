"""add retry sweep hot-path index

Revision ID: 0002_retry_sweep_index
Revises: 0001_donations
Create Date: 2026-10-16
"""

from alembic import op


revision = "0002_retry_sweep_index"
down_revision = "0001_donations"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_conversion_logs_status_attempts_last_attempt",
        "conversion_logs",
        ["status", "attempts", "last_attempt"],
    )


def downgrade() -> None:
    op.drop_index("ix_conversion_logs_status_attempts_last_attempt", table_name="conversion_logs")

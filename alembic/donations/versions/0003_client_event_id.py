"""store the browser event id on donations

Revision ID: 0003_client_event_id
Revises: 0002_retry_sweep_index
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_client_event_id"
down_revision = "0002_retry_sweep_index"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("donations", sa.Column("event_id", sa.String(), nullable=True))
    op.create_index("ix_donations_event_id", "donations", ["event_id"])
    op.create_index("ix_donations_donor_email", "donations", ["donor_email"])
    op.create_index(
        "ix_conversion_logs_donation_id_status_created_at",
        "conversion_logs",
        ["donation_id", "status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_conversion_logs_donation_id_status_created_at", table_name="conversion_logs")
    op.drop_index("ix_donations_donor_email", table_name="donations")
    op.drop_index("ix_donations_event_id", table_name="donations")
    op.drop_column("donations", "event_id")

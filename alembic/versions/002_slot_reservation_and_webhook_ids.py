# alembic/versions/002_slot_reservation_and_webhook_ids.py
"""Booking slot reservation flag and webhook event ids

Revision ID: 002_slot_reservation_and_webhook_ids
Revises: 001_marketplace_ledger
Create Date: 2026-10-18 12:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_slot_reservation_and_webhook_ids"
down_revision: Union[str, None] = "001_marketplace_ledger"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add bookings.slot_reserved and webhook_events.event_id."""
    with op.batch_alter_table("bookings") as batch_op:
        batch_op.add_column(
            sa.Column("slot_reserved", sa.Boolean(), nullable=False, server_default=sa.false())
        )

    with op.batch_alter_table("webhook_events") as batch_op:
        batch_op.add_column(sa.Column("event_id", sa.String(255), nullable=True))
        batch_op.create_unique_constraint(
            "uq_webhook_events_source_event_id", ["source", "event_id"]
        )


def downgrade() -> None:
    """Drop the reservation flag and webhook event ids."""
    with op.batch_alter_table("webhook_events") as batch_op:
        batch_op.drop_constraint("uq_webhook_events_source_event_id", type_="unique")
        batch_op.drop_column("event_id")

    with op.batch_alter_table("bookings") as batch_op:
        batch_op.drop_column("slot_reserved")

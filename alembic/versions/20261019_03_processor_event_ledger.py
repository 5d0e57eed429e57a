"""Create processor event ledger table."""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "20261019_03"
down_revision: Union[str, None] = "20261019_02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


processor_provider_enum = sa.Enum("stripe", name="processor_provider_enum")
processor_event_status_enum = sa.Enum(
    "received",
    "applied",
    "unchanged",
    "ignored",
    "unknown_business",
    "failed",
    name="processor_event_status_enum",
)


def upgrade() -> None:
    op.create_table(
        "processor_events",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", processor_provider_enum, nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", processor_event_status_enum, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("provider", "external_id", name="uq_processor_event_provider_external"),
    )


def downgrade() -> None:
    op.drop_table("processor_events")
    bind = op.get_bind()
    processor_event_status_enum.drop(bind, checkfirst=True)
    processor_provider_enum.drop(bind, checkfirst=True)

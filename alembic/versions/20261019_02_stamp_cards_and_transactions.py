"""Create stamp cards and the transaction audit trail."""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


transaction_type_enum = sa.Enum("card_created", "stamp_added", "reward_redeemed", name="transaction_type_enum")


def upgrade() -> None:
    op.create_table(
        "stamp_cards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column(
            "business_type",
            postgresql.ENUM("cafe", "restaurant", "retail", "other", name="business_type_enum", create_type=False),
            nullable=False,
        ),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("reward", sa.String(), nullable=False),
        sa.Column("color_class", sa.String(), nullable=True),
        sa.Column("total_stamps", sa.Integer(), nullable=False),
        sa.Column("current_stamps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamps", sa.JSON(), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_stamp_cards_user_id", "stamp_cards", ["user_id"])
    op.create_index("ix_stamp_cards_business_id", "stamp_cards", ["business_id"])
    op.create_index(
        "uq_stamp_cards_open_user_business",
        "stamp_cards",
        ["user_id", "business_id"],
        unique=True,
        sqlite_where=sa.text("is_redeemed = 0"),
        postgresql_where=sa.text("is_redeemed = false"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", transaction_type_enum, nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("stamp_card_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stamp_card_id"], ["stamp_cards.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_transactions_business_timestamp", "transactions", ["business_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_transactions_business_timestamp", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_stamp_cards_open_user_business", table_name="stamp_cards")
    op.drop_index("ix_stamp_cards_business_id", table_name="stamp_cards")
    op.drop_index("ix_stamp_cards_user_id", table_name="stamp_cards")
    op.drop_table("stamp_cards")
    transaction_type_enum.drop(op.get_bind(), checkfirst=True)

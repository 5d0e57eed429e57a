"""Append-only audit trail of ledger-affecting events."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, Index, func
from sqlalchemy.dialects.postgresql import UUID

from rewardcard_api.core.clock import utcnow
from rewardcard_api.db.base import Base


class TransactionTypeEnum(str, Enum):
    CARD_CREATED = "card_created"
    STAMP_ADDED = "stamp_added"
    REWARD_REDEEMED = "reward_redeemed"


class Transaction(Base):
    """Immutable audit record; rows are only ever inserted."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_business_timestamp", "business_id", "timestamp"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    type = Column(
        SqlEnum(
            TransactionTypeEnum,
            name="transaction_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    stamp_card_id = Column(UUID(as_uuid=True), ForeignKey("stamp_cards.id", ondelete="SET NULL"), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

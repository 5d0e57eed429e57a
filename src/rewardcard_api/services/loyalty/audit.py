"""Best-effort audit trail writes."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.models.transaction import Transaction, TransactionTypeEnum


class AuditTrail:
    """Appends ``Transaction`` rows after the owning unit of work has committed.

    A failed append is logged and rolled back on its own; it never
    propagates to the caller.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def record(
        self,
        transaction_type: TransactionTypeEnum,
        *,
        customer_id: UUID | None,
        business_id: UUID,
        stamp_card_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> Transaction | None:
        entry = Transaction(
            type=transaction_type,
            customer_id=customer_id,
            business_id=business_id,
            stamp_card_id=stamp_card_id,
            metadata_json=metadata or {},
        )
        if timestamp is not None:
            entry.timestamp = timestamp

        try:
            self._db.add(entry)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.error(
                "Failed to append audit transaction",
                transaction_type=transaction_type.value,
                business_id=str(business_id),
                stamp_card_id=str(stamp_card_id) if stamp_card_id else None,
                error=str(exc),
            )
            return None
        return entry

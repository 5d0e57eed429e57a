"""Stamp issuance: validates a scan against card, cooldown and quota, then applies it."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardcard_api.core.clock import utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business
from rewardcard_api.models.stamp_card import StampCard
from rewardcard_api.models.transaction import TransactionTypeEnum
from rewardcard_api.observability.loyalty import get_loyalty_store
from rewardcard_api.observability.tracing import get_tracer
from rewardcard_api.services.loyalty.audit import AuditTrail
from rewardcard_api.services.loyalty.errors import (
    AlreadyFinalizedError,
    CardFullError,
    ConcurrencyConflictError,
    CooldownError,
    MonthlyStampLimitError,
    NotFoundError,
    StampCardError,
)
from rewardcard_api.services.loyalty.quota_policy import can_add_stamp
from rewardcard_api.services.loyalty.rollover import apply_rollover


@dataclass(slots=True)
class StampResult:
    """Outcome of a successful stamp issuance."""

    card_id: UUID
    business_id: UUID
    customer_id: UUID
    new_stamp_count: int
    total_stamps: int
    is_completed: bool
    stamped_at: datetime


class StampLedgerService:
    """Applies single stamp-issuance events to a card and its business.

    The card and business rows carry optimistic version counters. A
    concurrent writer makes the flush raise ``StaleDataError``; the attempt is
    rolled back and every check re-runs against fresh rows.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = utcnow,
        cooldown: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._audit = audit or AuditTrail(db_session)
        self._clock = clock
        self._cooldown = cooldown if cooldown is not None else timedelta(seconds=settings.stamp_cooldown_seconds)
        self._max_attempts = max_attempts or settings.stamp_ledger_max_attempts

    async def add_stamp(self, card_id: UUID, issuer_id: UUID | str) -> StampResult:
        store = get_loyalty_store()
        with get_tracer().start_as_current_span("stamp_ledger.add_stamp") as span:
            span.set_attribute("stamp_card.id", str(card_id))
            for attempt in range(1, self._max_attempts + 1):
                try:
                    result = await self._apply(card_id, str(issuer_id))
                except StaleDataError:
                    await self._db.rollback()
                    logger.warning(
                        "Stamp card or business modified concurrently, retrying",
                        card_id=str(card_id),
                        attempt=attempt,
                    )
                    continue
                except StampCardError as exc:
                    await self._db.rollback()
                    store.record_rejection(exc.code)
                    span.set_attribute("stamp.rejected", exc.code)
                    logger.info("Stamp rejected", card_id=str(card_id), code=exc.code)
                    raise

                store.record_stamp_issued(completed=result.is_completed, retries=attempt - 1)
                span.set_attribute("stamp.count", result.new_stamp_count)
                logger.info(
                    "Added stamp",
                    card_id=str(card_id),
                    business_id=str(result.business_id),
                    stamp_number=result.new_stamp_count,
                    is_completed=result.is_completed,
                )
                await self._audit.record(
                    TransactionTypeEnum.STAMP_ADDED,
                    customer_id=result.customer_id,
                    business_id=result.business_id,
                    stamp_card_id=result.card_id,
                    metadata={
                        "stamp_number": result.new_stamp_count,
                        "is_completed": result.is_completed,
                    },
                    timestamp=result.stamped_at,
                )
                return result

        store.record_rejection(ConcurrencyConflictError.code)
        raise ConcurrencyConflictError(self._max_attempts)

    async def _apply(self, card_id: UUID, issuer_id: str) -> StampResult:
        now = self._clock()

        card = await self._db.get(StampCard, card_id, populate_existing=True)
        if card is None:
            raise NotFoundError("Stamp card", card_id)
        if card.is_completed or card.is_redeemed:
            raise AlreadyFinalizedError()
        if card.current_stamps >= card.total_stamps:
            raise CardFullError()

        last_stamped_at = card.last_stamped_at
        if last_stamped_at is not None:
            elapsed = now - last_stamped_at
            if elapsed < self._cooldown:
                remaining = math.ceil((self._cooldown - elapsed).total_seconds())
                raise CooldownError(retry_after_seconds=max(1, remaining))

        business = await self._db.get(Business, card.business_id, populate_existing=True)
        if business is None:
            raise NotFoundError("Business", card.business_id)

        if apply_rollover(business, now):
            get_loyalty_store().record_usage_rollover()
            if not can_add_stamp(business):
                # the reset is kept even though this stamp is refused
                await self._db.commit()
                raise MonthlyStampLimitError(business.max_monthly_stamps)

        if not can_add_stamp(business):
            raise MonthlyStampLimitError(business.max_monthly_stamps)

        new_count = card.append_stamp(stamped_at=now, stamped_by=issuer_id)
        card.updated_at = now
        business.total_stamps_issued = (business.total_stamps_issued or 0) + 1
        business.current_month_stamps = (business.current_month_stamps or 0) + 1

        result = StampResult(
            card_id=card.id,
            business_id=business.id,
            customer_id=card.user_id,
            new_stamp_count=new_count,
            total_stamps=card.total_stamps,
            is_completed=bool(card.is_completed),
            stamped_at=now,
        )
        await self._db.commit()
        return result

"""Find-or-create of the open stamp card for a customer at a business."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardcard_api.core.clock import utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business
from rewardcard_api.models.stamp_card import StampCard
from rewardcard_api.models.transaction import TransactionTypeEnum
from rewardcard_api.models.user import User
from rewardcard_api.observability.loyalty import get_loyalty_store
from rewardcard_api.services.loyalty.audit import AuditTrail
from rewardcard_api.services.loyalty.errors import (
    ConcurrencyConflictError,
    CustomerLimitError,
    NotFoundError,
)
from rewardcard_api.services.loyalty.quota_policy import can_add_customer


@dataclass(slots=True)
class CardLookup:
    card: StampCard
    created: bool


class CardLifecycleService:
    """Owns creation of stamp cards and the customer-count quota."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._audit = audit or AuditTrail(db_session)
        self._clock = clock
        self._max_attempts = max_attempts or settings.stamp_ledger_max_attempts

    async def get_open_card(self, user_id: UUID, business_id: UUID) -> StampCard | None:
        stmt = select(StampCard).where(
            StampCard.user_id == user_id,
            StampCard.business_id == business_id,
            StampCard.is_redeemed.is_(False),
        )
        result = await self._db.execute(stmt)
        return result.scalars().first()

    async def find_or_create_card(self, user_id: UUID, business_id: UUID) -> StampCard:
        lookup = await self.ensure_card(user_id, business_id)
        return lookup.card

    async def ensure_card(self, user_id: UUID, business_id: UUID) -> CardLookup:
        """Return the open card for the pair, creating it when none exists.

        Creation and the business stats increments commit together. The
        partial unique index on open cards makes a concurrent creator fail
        with ``IntegrityError``; the loser discards its work and returns the
        winner's card.
        """

        existing = await self.get_open_card(user_id, business_id)
        if existing is not None:
            return CardLookup(card=existing, created=False)

        store = get_loyalty_store()
        for attempt in range(1, self._max_attempts + 1):
            business = await self._db.get(Business, business_id, populate_existing=True)
            if business is None:
                raise NotFoundError("Business", business_id)
            if await self._db.get(User, user_id) is None:
                raise NotFoundError("Customer", user_id)
            if not can_add_customer(business):
                store.record_rejection(CustomerLimitError.code)
                logger.info(
                    "Customer limit reached",
                    business_id=str(business_id),
                    max_customers=business.max_customers,
                )
                raise CustomerLimitError(business.max_customers)

            now = self._clock()
            card = StampCard(
                user_id=user_id,
                business_id=business.id,
                business_name=business.name,
                business_type=business.business_type,
                logo_url=business.logo_url,
                reward=business.reward,
                color_class=business.color_class,
                total_stamps=business.total_stamps,
                current_stamps=0,
                stamps_json=[],
                is_completed=False,
                is_redeemed=False,
                created_at=now,
                updated_at=now,
            )
            self._db.add(card)
            business.active_cards = (business.active_cards or 0) + 1
            business.total_customers = (business.total_customers or 0) + 1

            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                logger.warning(
                    "Detected race when creating stamp card",
                    user_id=str(user_id),
                    business_id=str(business_id),
                )
                winner = await self.get_open_card(user_id, business_id)
                if winner is None:
                    raise
                store.record_card_race()
                return CardLookup(card=winner, created=False)
            except StaleDataError:
                await self._db.rollback()
                logger.warning(
                    "Business modified concurrently while creating stamp card",
                    business_id=str(business_id),
                    attempt=attempt,
                )
                continue

            store.record_card_created()
            logger.info(
                "Created stamp card",
                card_id=str(card.id),
                user_id=str(user_id),
                business_id=str(business_id),
                total_stamps=card.total_stamps,
            )
            audit_entry = await self._audit.record(
                TransactionTypeEnum.CARD_CREATED,
                customer_id=user_id,
                business_id=business.id,
                stamp_card_id=card.id,
                metadata={"business_name": card.business_name},
                timestamp=now,
            )
            if audit_entry is None:
                await self._db.refresh(card)
            return CardLookup(card=card, created=True)

        raise ConcurrencyConflictError(self._max_attempts)

"""Customer accounts and the wallet of stamp cards they hold."""

from __future__ import annotations

from datetime import datetime
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.core.clock import utcnow
from rewardcard_api.models.stamp_card import StampCard
from rewardcard_api.models.user import User, UserTypeEnum
from rewardcard_api.services.loyalty.member_ids import generate_member_id

MEMBER_ID_ATTEMPTS = 5


class CustomerService:
    def __init__(self, db_session: AsyncSession, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._db = db_session
        self._clock = clock

    async def get_user(self, user_id: UUID) -> User | None:
        return await self._db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.lower())
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def create_user(
        self,
        *,
        email: str,
        user_type: UserTypeEnum = UserTypeEnum.CUSTOMER,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> User:
        """Register a user. Customers receive a unique member id for their QR code."""

        normalized_email = email.strip().lower()
        existing = await self.get_by_email(normalized_email)
        if existing is not None:
            raise ValueError("A user with this email already exists")

        for attempt in range(1, MEMBER_ID_ATTEMPTS + 1):
            now = self._clock()
            user = User(
                email=normalized_email,
                display_name=display_name,
                photo_url=photo_url,
                user_type=user_type.value,
                member_id=generate_member_id(now) if user_type == UserTypeEnum.CUSTOMER else None,
                created_at=now,
            )
            self._db.add(user)
            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                if await self.get_by_email(normalized_email) is not None:
                    raise ValueError("A user with this email already exists")
                logger.warning("Member id collision, regenerating", attempt=attempt)
                continue

            logger.info("Created user", user_id=str(user.id), user_type=user_type.value)
            return user

        raise RuntimeError("Unable to allocate a unique member id")

    async def list_cards_for_user(self, user_id: UUID) -> list[StampCard]:
        """All cards held by the customer, most recently active first."""

        stmt = (
            select(StampCard)
            .where(StampCard.user_id == user_id)
            .order_by(StampCard.updated_at.desc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

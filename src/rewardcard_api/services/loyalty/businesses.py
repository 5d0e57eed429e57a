"""Business onboarding, stamp card settings and usage reporting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardcard_api.core.clock import utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business, BusinessTypeEnum, SubscriptionTierEnum
from rewardcard_api.models.transaction import Transaction
from rewardcard_api.services.loyalty.errors import ConcurrencyConflictError, NotFoundError
from rewardcard_api.services.loyalty.quota_policy import (
    FREE_USAGE,
    activity_feed_limit,
    apply_usage_policy,
    can_upload_logo,
    is_approaching_limit,
    is_pro,
    remaining_customers,
    remaining_monthly_stamps,
    stamp_count_bounds,
    usage_percentage,
)


@dataclass(slots=True)
class QuotaUsage:
    current: int
    limit: int
    remaining: int | None
    percentage: int
    approaching_limit: bool


@dataclass(slots=True)
class UsageSummary:
    tier: str
    is_pro: bool
    customers: QuotaUsage
    monthly_stamps: QuotaUsage
    month_started_at: datetime | None
    stamp_bounds: tuple[int, int]
    can_upload_logo: bool
    activity_feed_limit: int


class BusinessService:
    """Business onboarding and owner-facing settings."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock
        self._max_attempts = max_attempts or settings.stamp_ledger_max_attempts

    async def create_business(
        self,
        *,
        owner_id: UUID,
        name: str,
        email: str,
        business_type: BusinessTypeEnum = BusinessTypeEnum.OTHER,
        phone: str | None = None,
        total_stamps: int | None = None,
        reward: str | None = None,
        color_class: str | None = None,
    ) -> Business:
        """Create a business on the free tier."""

        if not name.strip():
            raise ValueError("Business name is required")

        now = self._clock()
        business = Business(
            owner_id=owner_id,
            name=name.strip(),
            email=email,
            business_type=business_type,
            phone=phone,
            total_stamps=total_stamps or settings.default_total_stamps,
            reward=(reward or settings.default_reward).strip(),
            color_class=color_class or settings.default_color_class,
            total_customers=0,
            active_cards=0,
            total_stamps_issued=0,
            tier=SubscriptionTierEnum.FREE,
            subscription_status=None,
            cancel_at_period_end=False,
            is_active=True,
        )
        apply_usage_policy(business, FREE_USAGE, now=now)
        if not stamp_count_bounds(business).contains(business.total_stamps):
            bounds = stamp_count_bounds(business)
            raise ValueError(f"Number of stamps must be between {bounds.min} and {bounds.max}")

        self._db.add(business)
        await self._db.commit()
        logger.info("Created business", business_id=str(business.id), owner_id=str(owner_id))
        return business

    async def get_owned_business(self, business_id: UUID, owner_id: UUID) -> Business:
        business = await self._db.get(Business, business_id)
        if business is None or business.owner_id != owner_id:
            raise NotFoundError("Business", business_id)
        return business

    async def update_settings(
        self,
        business: Business,
        *,
        name: str | None = None,
        reward: str | None = None,
        total_stamps: int | None = None,
        color_class: str | None = None,
        logo_url: str | None = None,
    ) -> Business:
        """Apply owner edits. Existing cards keep the configuration they were created with.

        Stamps bump the business version, so a save that overlaps a scan is
        reloaded and re-applied up to ``max_attempts`` times.
        """

        business_id = business.id
        for attempt in range(1, self._max_attempts + 1):
            self._apply_settings(
                business,
                name=name,
                reward=reward,
                total_stamps=total_stamps,
                color_class=color_class,
                logo_url=logo_url,
            )
            business.updated_at = self._clock()
            try:
                await self._db.commit()
            except StaleDataError:
                await self._db.rollback()
                logger.warning(
                    "Business modified concurrently while updating settings",
                    business_id=str(business_id),
                    attempt=attempt,
                )
                business = await self._db.get(Business, business_id, populate_existing=True)
                if business is None:
                    raise NotFoundError("Business", business_id)
                continue

            logger.info("Updated business settings", business_id=str(business_id), attempt=attempt)
            return business

        raise ConcurrencyConflictError(self._max_attempts)

    @staticmethod
    def _apply_settings(
        business: Business,
        *,
        name: str | None,
        reward: str | None,
        total_stamps: int | None,
        color_class: str | None,
        logo_url: str | None,
    ) -> None:
        if name is not None:
            if not name.strip():
                raise ValueError("Business name is required")
            business.name = name.strip()
        if reward is not None:
            if not reward.strip():
                raise ValueError("Reward description is required")
            business.reward = reward.strip()
        if total_stamps is not None:
            bounds = stamp_count_bounds(business)
            if not bounds.contains(total_stamps):
                raise ValueError(f"Number of stamps must be between {bounds.min} and {bounds.max}")
            business.total_stamps = total_stamps
        if color_class is not None:
            business.color_class = color_class
        if logo_url is not None:
            if not can_upload_logo(business):
                raise ValueError("Logo upload requires the Pro plan")
            business.logo_url = logo_url

    def usage_summary(self, business: Business) -> UsageSummary:
        bounds = stamp_count_bounds(business)
        customers_current = business.total_customers or 0
        stamps_current = business.current_month_stamps or 0
        return UsageSummary(
            tier=SubscriptionTierEnum(business.tier).value,
            is_pro=is_pro(business),
            customers=QuotaUsage(
                current=customers_current,
                limit=business.max_customers,
                remaining=remaining_customers(business),
                percentage=usage_percentage(customers_current, business.max_customers),
                approaching_limit=is_approaching_limit(customers_current, business.max_customers),
            ),
            monthly_stamps=QuotaUsage(
                current=stamps_current,
                limit=business.max_monthly_stamps,
                remaining=remaining_monthly_stamps(business),
                percentage=usage_percentage(stamps_current, business.max_monthly_stamps),
                approaching_limit=is_approaching_limit(stamps_current, business.max_monthly_stamps),
            ),
            month_started_at=business.month_started_at,
            stamp_bounds=(bounds.min, bounds.max),
            can_upload_logo=can_upload_logo(business),
            activity_feed_limit=activity_feed_limit(business),
        )

    async def recent_activity(self, business: Business, *, limit: int | None = None) -> list[Transaction]:
        """Newest audit entries, capped by the tier's activity feed size."""

        cap = activity_feed_limit(business)
        if limit is not None:
            cap = min(cap, limit)
        stmt = (
            select(Transaction)
            .where(Transaction.business_id == business.id)
            .order_by(Transaction.timestamp.desc())
            .limit(cap)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

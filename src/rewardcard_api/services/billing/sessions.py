"""Outbound Stripe checkout and billing portal sessions for Pro upgrades."""

from __future__ import annotations

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business
from rewardcard_api.services.billing.providers import StripeBillingProvider, StripeHostedSession


class BillingSessionError(ValueError):
    """Raised when a hosted session cannot be requested for the business."""


def default_success_url() -> str:
    return f"{settings.frontend_url.rstrip('/')}/business/dashboard?session_id={{CHECKOUT_SESSION_ID}}"


def default_return_url() -> str:
    return f"{settings.frontend_url.rstrip('/')}/business/dashboard"


class BillingSessionService:
    def __init__(self, db_session: AsyncSession, provider: StripeBillingProvider) -> None:
        self._db = db_session
        self._provider = provider

    async def ensure_customer(self, business: Business) -> str:
        """Return the business's Stripe customer id, creating the customer on first use."""

        if business.stripe_customer_id:
            return business.stripe_customer_id

        business_id = business.id
        customer_id = await self._provider.create_customer(email=business.email, business_id=str(business_id))
        business.stripe_customer_id = customer_id
        try:
            await self._db.commit()
        except StaleDataError:
            await self._db.rollback()
            refreshed = await self._db.get(Business, business_id, populate_existing=True)
            if refreshed is None or not refreshed.stripe_customer_id:
                raise
            logger.warning(
                "Stripe customer stored concurrently, discarding duplicate",
                business_id=str(business_id),
                discarded_customer_id=customer_id,
            )
            return refreshed.stripe_customer_id

        logger.info("Created Stripe customer", business_id=str(business_id), customer_id=customer_id)
        return customer_id

    async def create_checkout_session(
        self,
        business: Business,
        *,
        price_id: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> StripeHostedSession:
        if price_id not in settings.allowed_price_ids:
            raise BillingSessionError("Unknown price identifier")

        customer_id = await self.ensure_customer(business)
        session = await self._provider.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            business_id=str(business.id),
            success_url=success_url or default_success_url(),
            cancel_url=cancel_url or default_return_url(),
        )
        logger.info(
            "Created Stripe checkout session",
            business_id=str(business.id),
            session_id=session.session_id,
            price_id=price_id,
        )
        return session

    async def create_portal_session(self, business: Business, *, return_url: str | None = None) -> StripeHostedSession:
        if not business.stripe_customer_id:
            raise BillingSessionError("Business has no Stripe customer")

        session = await self._provider.create_portal_session(
            customer_id=business.stripe_customer_id,
            return_url=return_url or default_return_url(),
        )
        logger.info("Created Stripe billing portal session", business_id=str(business.id))
        return session


__all__ = ["BillingSessionError", "BillingSessionService", "default_return_url", "default_success_url"]

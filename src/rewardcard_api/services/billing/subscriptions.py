"""Apply Stripe subscription lifecycle notifications to the business snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewardcard_api.core.clock import ensure_aware, from_unix, utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import (
    Business,
    SubscriptionStatusEnum,
    SubscriptionTierEnum,
)
from rewardcard_api.services.loyalty.errors import ConcurrencyConflictError
from rewardcard_api.services.loyalty.quota_policy import FREE_USAGE, PRO_USAGE, apply_usage_policy


class ReconcileStatus(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    UNKNOWN_BUSINESS = "unknown_business"
    IGNORED = "ignored"


@dataclass(slots=True)
class ReconcileResult:
    status: ReconcileStatus
    business_id: UUID | None = None


_STATUS_ALIASES: dict[str, SubscriptionStatusEnum] = {
    "trialing": SubscriptionStatusEnum.ACTIVE,
    "unpaid": SubscriptionStatusEnum.PAST_DUE,
    "incomplete_expired": SubscriptionStatusEnum.CANCELED,
    "paused": SubscriptionStatusEnum.PAST_DUE,
}

HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_failed",
        "invoice.payment_succeeded",
        "invoice.paid",
    }
)


def normalize_status(raw: str | None) -> SubscriptionStatusEnum:
    """Map a Stripe subscription status onto the four locally tracked states."""

    value = (raw or "").lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return SubscriptionStatusEnum(value)
    except ValueError:
        logger.warning("Unrecognized Stripe subscription status", status=raw)
        return SubscriptionStatusEnum.INCOMPLETE


def _first_item(subscription: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not subscription:
        return {}
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _subscription_period(subscription: Mapping[str, Any] | None) -> tuple[datetime | None, datetime | None]:
    if not subscription:
        return None, None
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return from_unix(start), from_unix(end)


def _invoice_period(invoice: Mapping[str, Any]) -> tuple[datetime | None, datetime | None]:
    lines = (invoice.get("lines") or {}).get("data") or []
    period = (lines[0].get("period") or {}) if lines else {}
    start = period.get("start") or invoice.get("period_start")
    end = period.get("end") or invoice.get("period_end")
    return from_unix(start), from_unix(end)


def _same_instant(left: datetime | None, right: datetime | None) -> bool:
    if left is None or right is None:
        return left is right
    return ensure_aware(left) == ensure_aware(right)


class _ChangeTracker:
    """Assigns attributes on the business and remembers whether anything moved."""

    def __init__(self, business: Business) -> None:
        self.business = business
        self.changed = False

    def set(self, attribute: str, value: Any) -> None:
        current = getattr(self.business, attribute)
        if isinstance(value, datetime) or isinstance(current, datetime):
            equal = _same_instant(current, value)
        else:
            equal = current == value
        if not equal:
            setattr(self.business, attribute, value)
            self.changed = True


class SubscriptionReconciler:
    """Reconciles Stripe subscription events into business tier and usage state.

    Every handler is idempotent: re-applying an event the business already
    reflects reports ``unchanged`` and leaves the row alone. Unknown
    businesses are logged and reported, never raised.
    """

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

    async def apply(
        self,
        event_type: str,
        data_object: Mapping[str, Any],
        subscription: Mapping[str, Any] | None = None,
    ) -> ReconcileResult:
        if event_type not in HANDLED_EVENT_TYPES:
            logger.info("Ignoring unhandled Stripe event", event_type=event_type)
            return ReconcileResult(status=ReconcileStatus.IGNORED)

        for attempt in range(1, self._max_attempts + 1):
            business = await self.resolve_business(data_object)
            if business is None:
                logger.warning(
                    "No business found for Stripe event",
                    event_type=event_type,
                    customer_id=data_object.get("customer"),
                )
                return ReconcileResult(status=ReconcileStatus.UNKNOWN_BUSINESS)

            business_id = business.id
            now = self._clock()
            changed = self._dispatch(event_type, business, data_object, subscription, now)
            if not changed:
                logger.info("Stripe event already reflected", event_type=event_type, business_id=str(business_id))
                return ReconcileResult(status=ReconcileStatus.UNCHANGED, business_id=business_id)

            business.updated_at = now
            try:
                await self._db.commit()
            except StaleDataError:
                await self._db.rollback()
                logger.warning(
                    "Business modified concurrently while applying Stripe event",
                    business_id=str(business_id),
                    attempt=attempt,
                )
                continue

            logger.info(
                "Applied Stripe event",
                event_type=event_type,
                business_id=str(business_id),
                tier=SubscriptionTierEnum(business.tier).value,
                status=business.subscription_status.value if business.subscription_status else None,
            )
            return ReconcileResult(status=ReconcileStatus.APPLIED, business_id=business_id)

        raise ConcurrencyConflictError(self._max_attempts)

    async def resolve_business(self, data_object: Mapping[str, Any]) -> Business | None:
        """Find the business by stored Stripe customer id, then by payload metadata."""

        customer_id = data_object.get("customer")
        if isinstance(customer_id, str) and customer_id:
            stmt = (
                select(Business)
                .where(Business.stripe_customer_id == customer_id)
                .execution_options(populate_existing=True)
            )
            business = (await self._db.execute(stmt)).scalars().first()
            if business is not None:
                return business

        metadata = dict(data_object.get("metadata") or {})
        details = data_object.get("subscription_details") or {}
        metadata.update({k: v for k, v in (details.get("metadata") or {}).items() if k not in metadata})
        raw_business_id = metadata.get("business_id") or metadata.get("businessId")
        if not raw_business_id:
            return None
        try:
            business_id = UUID(str(raw_business_id))
        except ValueError:
            logger.warning("Invalid business id in Stripe metadata", business_id=raw_business_id)
            return None
        return await self._db.get(Business, business_id, populate_existing=True)

    def _dispatch(
        self,
        event_type: str,
        business: Business,
        data_object: Mapping[str, Any],
        subscription: Mapping[str, Any] | None,
        now: datetime,
    ) -> bool:
        if event_type == "checkout.session.completed":
            return self._checkout_completed(business, data_object, subscription, now)
        if event_type == "customer.subscription.updated":
            return self._subscription_updated(business, data_object)
        if event_type == "customer.subscription.deleted":
            return self._subscription_deleted(business, now)
        if event_type == "invoice.payment_failed":
            return self._payment_failed(business)
        return self._payment_succeeded(business, data_object)

    def _checkout_completed(
        self,
        business: Business,
        session: Mapping[str, Any],
        subscription: Mapping[str, Any] | None,
        now: datetime,
    ) -> bool:
        subscription_id = session.get("subscription")
        if isinstance(subscription_id, Mapping):
            subscription = subscription or subscription_id
            subscription_id = subscription_id.get("id")

        customer_id = session.get("customer")
        if (
            business.tier == SubscriptionTierEnum.PRO
            and business.subscription_status == SubscriptionStatusEnum.ACTIVE
        ):
            if subscription_id and business.stripe_subscription_id == subscription_id:
                return False
            # no subscription reference: same customer (or none given) means a replay
            if not subscription_id and (not customer_id or business.stripe_customer_id == customer_id):
                return False

        period_start, period_end = _subscription_period(subscription)
        price = _first_item(subscription).get("price") or {}

        business.tier = SubscriptionTierEnum.PRO
        business.subscription_status = SubscriptionStatusEnum.ACTIVE
        if customer_id:
            business.stripe_customer_id = customer_id
        business.stripe_subscription_id = subscription_id
        business.stripe_price_id = price.get("id") or business.stripe_price_id
        business.current_period_start = period_start or now
        business.current_period_end = period_end or now
        business.cancel_at_period_end = False
        business.cancel_at = None
        apply_usage_policy(business, PRO_USAGE, now=now)
        return True

    def _subscription_updated(self, business: Business, subscription: Mapping[str, Any]) -> bool:
        tracker = _ChangeTracker(business)
        period_start, period_end = _subscription_period(subscription)

        tracker.set("subscription_status", normalize_status(subscription.get("status")))
        if period_start is not None:
            tracker.set("current_period_start", period_start)
        if period_end is not None:
            tracker.set("current_period_end", period_end)
        tracker.set("cancel_at_period_end", bool(subscription.get("cancel_at_period_end")))
        tracker.set("cancel_at", from_unix(subscription.get("cancel_at")))
        return tracker.changed

    def _subscription_deleted(self, business: Business, now: datetime) -> bool:
        if (
            business.tier == SubscriptionTierEnum.FREE
            and business.subscription_status == SubscriptionStatusEnum.CANCELED
        ):
            return False

        business.tier = SubscriptionTierEnum.FREE
        business.subscription_status = SubscriptionStatusEnum.CANCELED
        business.cancel_at_period_end = False
        business.cancel_at = None
        apply_usage_policy(business, FREE_USAGE, now=now)
        return True

    def _payment_failed(self, business: Business) -> bool:
        tracker = _ChangeTracker(business)
        tracker.set("subscription_status", SubscriptionStatusEnum.PAST_DUE)
        return tracker.changed

    def _payment_succeeded(self, business: Business, invoice: Mapping[str, Any]) -> bool:
        tracker = _ChangeTracker(business)
        period_start, period_end = _invoice_period(invoice)

        tracker.set("subscription_status", SubscriptionStatusEnum.ACTIVE)
        if period_start is not None:
            tracker.set("current_period_start", period_start)
        if period_end is not None:
            tracker.set("current_period_end", period_end)
        return tracker.changed


__all__ = [
    "HANDLED_EVENT_TYPES",
    "ReconcileResult",
    "ReconcileStatus",
    "SubscriptionReconciler",
    "normalize_status",
]

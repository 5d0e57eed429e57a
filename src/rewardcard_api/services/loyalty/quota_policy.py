"""Tier policy tables and pure quota checks over a business usage snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Final

from rewardcard_api.models.business import (
    UNLIMITED,
    Business,
    SubscriptionStatusEnum,
    SubscriptionTierEnum,
)


APPROACHING_LIMIT_RATIO: Final[float] = 0.8


@dataclass(frozen=True, slots=True)
class UsagePolicy:
    """Limits in effect for a tier. ``-1`` means unlimited."""

    max_customers: int
    max_monthly_stamps: int
    max_activity_feed_items: int
    can_upload_logo: bool
    min_stamp_card_stamps: int
    max_stamp_card_stamps: int


@dataclass(frozen=True, slots=True)
class StampBounds:
    min: int
    max: int

    def contains(self, value: int) -> bool:
        return self.min <= value <= self.max


FREE_USAGE: Final[UsagePolicy] = UsagePolicy(
    max_customers=50,
    max_monthly_stamps=500,
    max_activity_feed_items=10,
    can_upload_logo=False,
    min_stamp_card_stamps=10,
    max_stamp_card_stamps=10,
)

PRO_USAGE: Final[UsagePolicy] = UsagePolicy(
    max_customers=UNLIMITED,
    max_monthly_stamps=UNLIMITED,
    max_activity_feed_items=100,
    can_upload_logo=True,
    min_stamp_card_stamps=3,
    max_stamp_card_stamps=50,
)

_POLICIES: Final[dict[SubscriptionTierEnum, UsagePolicy]] = {
    SubscriptionTierEnum.FREE: FREE_USAGE,
    SubscriptionTierEnum.PRO: PRO_USAGE,
}


def usage_table_for(tier: SubscriptionTierEnum | str) -> UsagePolicy:
    return _POLICIES[SubscriptionTierEnum(tier)]


def apply_usage_policy(business: Business, policy: UsagePolicy, *, now: datetime) -> None:
    """Replace the usage snapshot with ``policy`` and restart the monthly counter."""

    business.max_customers = policy.max_customers
    business.max_monthly_stamps = policy.max_monthly_stamps
    business.max_activity_feed_items = policy.max_activity_feed_items
    business.can_upload_logo = policy.can_upload_logo
    business.min_stamp_card_stamps = policy.min_stamp_card_stamps
    business.max_stamp_card_stamps = policy.max_stamp_card_stamps
    business.current_month_stamps = 0
    business.month_started_at = now


def is_pro(business: Business) -> bool:
    return business.tier == SubscriptionTierEnum.PRO and business.subscription_status in (
        None,
        SubscriptionStatusEnum.ACTIVE,
    )


def can_add_customer(business: Business) -> bool:
    if business.max_customers == UNLIMITED:
        return True
    return (business.total_customers or 0) < business.max_customers


def can_add_stamp(business: Business) -> bool:
    if business.max_monthly_stamps == UNLIMITED:
        return True
    return (business.current_month_stamps or 0) < business.max_monthly_stamps


def can_upload_logo(business: Business) -> bool:
    return bool(business.can_upload_logo)


def stamp_count_bounds(business: Business) -> StampBounds:
    return StampBounds(min=business.min_stamp_card_stamps, max=business.max_stamp_card_stamps)


def activity_feed_limit(business: Business) -> int:
    return business.max_activity_feed_items


def remaining_customers(business: Business) -> int | None:
    if business.max_customers == UNLIMITED:
        return None
    return max(0, business.max_customers - (business.total_customers or 0))


def remaining_monthly_stamps(business: Business) -> int | None:
    if business.max_monthly_stamps == UNLIMITED:
        return None
    return max(0, business.max_monthly_stamps - (business.current_month_stamps or 0))


def usage_percentage(current: int, maximum: int) -> int:
    """Progress-bar percentage, 0 for unlimited quotas."""

    if maximum == UNLIMITED:
        return 0
    if maximum <= 0:
        return 100
    # half-up rounding, matching the dashboard progress bars
    return min(100, int(current * 100 / maximum + 0.5))


def is_approaching_limit(current: int, maximum: int) -> bool:
    if maximum == UNLIMITED:
        return False
    if maximum <= 0:
        return True
    return current / maximum >= APPROACHING_LIMIT_RATIO


__all__ = [
    "APPROACHING_LIMIT_RATIO",
    "FREE_USAGE",
    "PRO_USAGE",
    "StampBounds",
    "UsagePolicy",
    "activity_feed_limit",
    "apply_usage_policy",
    "can_add_customer",
    "can_add_stamp",
    "can_upload_logo",
    "is_approaching_limit",
    "is_pro",
    "remaining_customers",
    "remaining_monthly_stamps",
    "stamp_count_bounds",
    "usage_percentage",
    "usage_table_for",
]

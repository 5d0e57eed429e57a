"""Monthly stamp counter rollover on a fixed rolling window (not calendar months)."""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger

from rewardcard_api.core.clock import ensure_aware
from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business


def usage_window() -> timedelta:
    return timedelta(days=settings.usage_window_days)


def should_reset(business: Business, now: datetime) -> bool:
    if business.month_started_at is None:
        return True
    return ensure_aware(now) - ensure_aware(business.month_started_at) >= usage_window()


def apply_rollover(business: Business, now: datetime) -> bool:
    """Reset the monthly counter when the window has elapsed. Returns True if reset."""

    if not should_reset(business, now):
        return False

    logger.info(
        "Rolled over monthly stamp usage",
        business_id=str(business.id),
        previous_count=business.current_month_stamps,
        previous_window_start=business.month_started_at,
    )
    business.current_month_stamps = 0
    business.month_started_at = now
    return True

"""Business aggregate: stamp-card config, subscription snapshot, usage quotas and stats."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rewardcard_api.core.clock import utcnow
from rewardcard_api.db.base import Base


UNLIMITED = -1


class BusinessTypeEnum(str, Enum):
    CAFE = "cafe"
    RESTAURANT = "restaurant"
    RETAIL = "retail"
    OTHER = "other"


class SubscriptionTierEnum(str, Enum):
    FREE = "free"
    PRO = "pro"


class SubscriptionStatusEnum(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


class Business(Base):
    """A merchant issuing stamps.

    The ``usage`` limit columns always mirror the policy table of ``tier``;
    ``current_month_stamps`` and the ``total_*``/``active_cards`` stats are
    runtime counters that survive tier changes.
    """

    __tablename__ = "businesses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    name = Column(String, nullable=False)
    business_type = Column(
        SqlEnum(
            BusinessTypeEnum,
            name="business_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=BusinessTypeEnum.OTHER,
    )
    email = Column(String, nullable=False)
    phone = Column(String(32), nullable=True)
    logo_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")

    # Stamp card configuration applied to newly created cards
    total_stamps = Column(Integer, nullable=False, default=10)
    reward = Column(String, nullable=False, default="Free Item")
    color_class = Column(String, nullable=False, default="from-orange-500 to-orange-600")

    # Aggregate stats
    total_customers = Column(Integer, nullable=False, default=0, server_default="0")
    active_cards = Column(Integer, nullable=False, default=0, server_default="0")
    total_stamps_issued = Column(Integer, nullable=False, default=0, server_default="0")

    # Subscription snapshot
    tier = Column(
        SqlEnum(
            SubscriptionTierEnum,
            name="subscription_tier_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SubscriptionTierEnum.FREE,
        server_default=SubscriptionTierEnum.FREE.value,
    )
    subscription_status = Column(
        SqlEnum(
            SubscriptionStatusEnum,
            name="subscription_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False, server_default="false")
    cancel_at = Column(DateTime(timezone=True), nullable=True)

    # Usage quotas
    max_customers = Column(Integer, nullable=False)
    max_monthly_stamps = Column(Integer, nullable=False)
    current_month_stamps = Column(Integer, nullable=False, default=0, server_default="0")
    month_started_at = Column(DateTime(timezone=True), nullable=True)
    max_activity_feed_items = Column(Integer, nullable=False)
    can_upload_logo = Column(Boolean, nullable=False)
    min_stamp_card_stamps = Column(Integer, nullable=False)
    max_stamp_card_stamps = Column(Integer, nullable=False)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

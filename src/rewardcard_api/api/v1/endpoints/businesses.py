"""Business onboarding, settings, activity feed and QR scans."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.api.dependencies.session import require_business_session
from rewardcard_api.api.errors import stamp_error_to_http
from rewardcard_api.db.session import get_session
from rewardcard_api.models.business import Business, BusinessTypeEnum
from rewardcard_api.models.transaction import Transaction
from rewardcard_api.models.user import User
from rewardcard_api.services.loyalty import (
    BusinessService,
    QuotaUsage,
    ScanService,
    StampCardError,
    UsageSummary,
)


router = APIRouter(prefix="/businesses", tags=["businesses"])


class BusinessCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=320)
    businessType: Literal["cafe", "restaurant", "retail", "other"] = "other"
    phone: Optional[str] = Field(default=None, max_length=32)
    reward: Optional[str] = Field(default=None, max_length=200)


class BusinessSettingsRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    reward: Optional[str] = Field(default=None, max_length=200)
    totalStamps: Optional[int] = None
    colorClass: Optional[str] = None
    logoUrl: Optional[str] = None


class QuotaUsageResponse(BaseModel):
    current: int
    limit: int
    remaining: Optional[int]
    percentage: int
    approachingLimit: bool


class UsageSummaryResponse(BaseModel):
    tier: str
    isPro: bool
    customers: QuotaUsageResponse
    monthlyStamps: QuotaUsageResponse
    monthStartedAt: Optional[datetime]
    minStampCardStamps: int
    maxStampCardStamps: int
    canUploadLogo: bool
    activityFeedLimit: int


class SubscriptionResponse(BaseModel):
    tier: str
    status: Optional[str]
    currentPeriodStart: Optional[datetime]
    currentPeriodEnd: Optional[datetime]
    cancelAtPeriodEnd: bool
    cancelAt: Optional[datetime]
    hasBillingAccount: bool


class BusinessResponse(BaseModel):
    id: UUID
    ownerId: UUID
    name: str
    businessType: str
    email: str
    phone: Optional[str]
    logoUrl: Optional[str]
    totalStamps: int
    reward: str
    colorClass: str
    totalCustomers: int
    activeCards: int
    totalStampsIssued: int
    subscription: SubscriptionResponse
    usage: UsageSummaryResponse
    createdAt: datetime
    updatedAt: datetime


class ActivityItemResponse(BaseModel):
    id: UUID
    type: str
    customerId: Optional[UUID]
    stampCardId: Optional[UUID]
    metadata: dict[str, Any]
    timestamp: datetime


class ScanRequest(BaseModel):
    memberId: str = Field(..., min_length=1, max_length=64)


class ScanResponse(BaseModel):
    customerId: UUID
    customerName: Optional[str]
    memberId: str
    cardId: UUID
    cardCreated: bool
    stampNumber: int
    totalStamps: int
    isCompleted: bool
    stampedAt: datetime


def _serialize_quota(quota: QuotaUsage) -> QuotaUsageResponse:
    return QuotaUsageResponse(
        current=quota.current,
        limit=quota.limit,
        remaining=quota.remaining,
        percentage=quota.percentage,
        approachingLimit=quota.approaching_limit,
    )


def _serialize_usage(summary: UsageSummary) -> UsageSummaryResponse:
    return UsageSummaryResponse(
        tier=summary.tier,
        isPro=summary.is_pro,
        customers=_serialize_quota(summary.customers),
        monthlyStamps=_serialize_quota(summary.monthly_stamps),
        monthStartedAt=summary.month_started_at,
        minStampCardStamps=summary.stamp_bounds[0],
        maxStampCardStamps=summary.stamp_bounds[1],
        canUploadLogo=summary.can_upload_logo,
        activityFeedLimit=summary.activity_feed_limit,
    )


def _serialize_business(business: Business, summary: UsageSummary) -> BusinessResponse:
    return BusinessResponse(
        id=business.id,
        ownerId=business.owner_id,
        name=business.name,
        businessType=BusinessTypeEnum(business.business_type).value,
        email=business.email,
        phone=business.phone,
        logoUrl=business.logo_url,
        totalStamps=business.total_stamps,
        reward=business.reward,
        colorClass=business.color_class,
        totalCustomers=business.total_customers,
        activeCards=business.active_cards,
        totalStampsIssued=business.total_stamps_issued,
        subscription=SubscriptionResponse(
            tier=summary.tier,
            status=business.subscription_status.value if business.subscription_status else None,
            currentPeriodStart=business.current_period_start,
            currentPeriodEnd=business.current_period_end,
            cancelAtPeriodEnd=bool(business.cancel_at_period_end),
            cancelAt=business.cancel_at,
            hasBillingAccount=bool(business.stripe_customer_id),
        ),
        usage=_serialize_usage(summary),
        createdAt=business.created_at,
        updatedAt=business.updated_at,
    )


def _serialize_activity(entry: Transaction) -> ActivityItemResponse:
    return ActivityItemResponse(
        id=entry.id,
        type=entry.type.value,
        customerId=entry.customer_id,
        stampCardId=entry.stamp_card_id,
        metadata=dict(entry.metadata_json or {}),
        timestamp=entry.timestamp,
    )


async def _load_owned_business(service: BusinessService, business_id: UUID, owner: User) -> Business:
    try:
        return await service.get_owned_business(business_id, owner.id)
    except StampCardError as exc:
        raise stamp_error_to_http(exc) from exc


@router.post("", response_model=BusinessResponse, status_code=status.HTTP_201_CREATED)
async def create_business(
    payload: BusinessCreateRequest,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> BusinessResponse:
    """Onboard a business on the free plan, owned by the session user."""

    service = BusinessService(db)
    try:
        business = await service.create_business(
            owner_id=current_user.id,
            name=payload.name,
            email=payload.email,
            business_type=BusinessTypeEnum(payload.businessType),
            phone=payload.phone,
            reward=payload.reward,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _serialize_business(business, service.usage_summary(business))


@router.get("/{business_id}", response_model=BusinessResponse)
async def read_business(
    business_id: UUID,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> BusinessResponse:
    service = BusinessService(db)
    business = await _load_owned_business(service, business_id, current_user)
    return _serialize_business(business, service.usage_summary(business))


@router.patch("/{business_id}/settings", response_model=BusinessResponse)
async def update_business_settings(
    business_id: UUID,
    payload: BusinessSettingsRequest,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> BusinessResponse:
    """Update stamp card settings applied to cards created from now on."""

    service = BusinessService(db)
    business = await _load_owned_business(service, business_id, current_user)
    try:
        business = await service.update_settings(
            business,
            name=payload.name,
            reward=payload.reward,
            total_stamps=payload.totalStamps,
            color_class=payload.colorClass,
            logo_url=payload.logoUrl,
        )
    except StampCardError as exc:
        raise stamp_error_to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _serialize_business(business, service.usage_summary(business))


@router.get("/{business_id}/activity", response_model=list[ActivityItemResponse])
async def list_business_activity(
    business_id: UUID,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> list[ActivityItemResponse]:
    service = BusinessService(db)
    business = await _load_owned_business(service, business_id, current_user)
    entries = await service.recent_activity(business, limit=limit)
    return [_serialize_activity(entry) for entry in entries]


@router.post("/{business_id}/scans", response_model=ScanResponse)
async def scan_member(
    business_id: UUID,
    payload: ScanRequest,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> ScanResponse:
    """Resolve a scanned member QR code and add one stamp to the customer's card."""

    await _load_owned_business(BusinessService(db), business_id, current_user)
    try:
        outcome = await ScanService(db).process_scan(
            business_id=business_id,
            member_id=payload.memberId,
            issuer_id=current_user.id,
        )
    except StampCardError as exc:
        raise stamp_error_to_http(exc) from exc

    return ScanResponse(
        customerId=outcome.customer_id,
        customerName=outcome.customer_name,
        memberId=outcome.member_id,
        cardId=outcome.stamp.card_id,
        cardCreated=outcome.card_created,
        stampNumber=outcome.stamp.new_stamp_count,
        totalStamps=outcome.stamp.total_stamps,
        isCompleted=outcome.stamp.is_completed,
        stampedAt=outcome.stamp.stamped_at,
    )

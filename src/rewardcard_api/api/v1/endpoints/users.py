"""User registration and the customer card wallet."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.api.dependencies.session import require_member_session
from rewardcard_api.db.session import get_session
from rewardcard_api.models.stamp_card import StampCard
from rewardcard_api.models.user import User, UserTypeEnum
from rewardcard_api.services.loyalty import CustomerService


router = APIRouter(prefix="/users", tags=["users"])


class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    displayName: Optional[str] = Field(default=None, max_length=120)
    photoUrl: Optional[str] = None
    userType: Literal["customer", "business"] = "customer"


class UserResponse(BaseModel):
    id: UUID
    email: str
    displayName: Optional[str]
    photoUrl: Optional[str]
    userType: str
    memberId: Optional[str]
    createdAt: datetime


class StampRecordResponse(BaseModel):
    stampedAt: str
    stampedBy: Optional[str]


class StampCardResponse(BaseModel):
    id: UUID
    businessId: UUID
    businessName: str
    businessType: str
    logoUrl: Optional[str]
    reward: str
    colorClass: Optional[str]
    totalStamps: int
    currentStamps: int
    stamps: list[StampRecordResponse]
    isCompleted: bool
    completedAt: Optional[datetime]
    isRedeemed: bool
    redeemedAt: Optional[datetime]
    createdAt: datetime
    updatedAt: datetime


def _serialize_user(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        displayName=user.display_name,
        photoUrl=user.photo_url,
        userType=user.user_type,
        memberId=user.member_id,
        createdAt=user.created_at,
    )


def _serialize_stamp(record: dict[str, Any]) -> StampRecordResponse:
    return StampRecordResponse(stampedAt=record.get("stamped_at", ""), stampedBy=record.get("stamped_by"))


def serialize_card(card: StampCard) -> StampCardResponse:
    return StampCardResponse(
        id=card.id,
        businessId=card.business_id,
        businessName=card.business_name,
        businessType=card.business_type.value if hasattr(card.business_type, "value") else str(card.business_type),
        logoUrl=card.logo_url,
        reward=card.reward,
        colorClass=card.color_class,
        totalStamps=card.total_stamps,
        currentStamps=card.current_stamps,
        stamps=[_serialize_stamp(record) for record in card.stamps],
        isCompleted=bool(card.is_completed),
        completedAt=card.completed_at,
        isRedeemed=bool(card.is_redeemed),
        redeemedAt=card.redeemed_at,
        createdAt=card.created_at,
        updatedAt=card.updated_at,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateRequest, db: AsyncSession = Depends(get_session)) -> UserResponse:
    """Register a customer or business account."""

    service = CustomerService(db)
    try:
        user = await service.create_user(
            email=payload.email,
            user_type=UserTypeEnum(payload.userType),
            display_name=payload.displayName,
            photo_url=payload.photoUrl,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _serialize_user(user)


@router.get("/me", response_model=UserResponse)
async def read_current_user(current_user: User = Depends(require_member_session)) -> UserResponse:
    return _serialize_user(current_user)


@router.get("/me/stamp-cards", response_model=list[StampCardResponse])
async def list_my_stamp_cards(
    current_user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[StampCardResponse]:
    """Cards held by the authenticated customer, most recently active first."""

    cards = await CustomerService(db).list_cards_for_user(current_user.id)
    return [serialize_card(card) for card in cards]

"""Direct stamp issuance against a known card."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.api.dependencies.session import require_business_session
from rewardcard_api.api.errors import stamp_error_to_http
from rewardcard_api.db.session import get_session
from rewardcard_api.models.business import Business
from rewardcard_api.models.stamp_card import StampCard
from rewardcard_api.models.user import User
from rewardcard_api.services.loyalty import NotFoundError, StampCardError, StampLedgerService


router = APIRouter(prefix="/stamp-cards", tags=["stamp-cards"])


class StampAddedResponse(BaseModel):
    cardId: UUID
    newStampCount: int
    totalStamps: int
    isCompleted: bool
    stampedAt: datetime


async def _ensure_card_owner(db: AsyncSession, card_id: UUID, owner: User) -> None:
    card = await db.get(StampCard, card_id)
    if card is None:
        raise NotFoundError("Stamp card", card_id)
    business = await db.get(Business, card.business_id)
    if business is None or business.owner_id != owner.id:
        raise NotFoundError("Stamp card", card_id)


@router.post("/{card_id}/stamps", response_model=StampAddedResponse)
async def add_stamp(
    card_id: UUID,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> StampAddedResponse:
    """Add one stamp to a card held at one of the caller's businesses."""

    try:
        await _ensure_card_owner(db, card_id, current_user)
        result = await StampLedgerService(db).add_stamp(card_id, current_user.id)
    except StampCardError as exc:
        raise stamp_error_to_http(exc) from exc

    return StampAddedResponse(
        cardId=result.card_id,
        newStampCount=result.new_stamp_count,
        totalStamps=result.total_stamps,
        isCompleted=result.is_completed,
        stampedAt=result.stamped_at,
    )

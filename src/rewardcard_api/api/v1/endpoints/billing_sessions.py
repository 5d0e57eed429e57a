"""Hosted Stripe checkout and billing portal session endpoints."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.api.dependencies.session import require_business_session
from rewardcard_api.api.errors import stamp_error_to_http
from rewardcard_api.db.session import get_session
from rewardcard_api.models.business import Business
from rewardcard_api.models.user import User
from rewardcard_api.services.billing import BillingSessionError, BillingSessionService
from rewardcard_api.services.billing.providers import StripeBillingProvider
from rewardcard_api.services.loyalty import BusinessService, StampCardError


router = APIRouter(prefix="/billing/sessions", tags=["billing-sessions"])


class CheckoutSessionRequest(BaseModel):
    businessId: UUID
    priceId: str = Field(..., min_length=1)
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class PortalSessionRequest(BaseModel):
    businessId: UUID
    returnUrl: Optional[str] = None


class HostedSessionResponse(BaseModel):
    sessionId: str
    url: str


def _provider() -> StripeBillingProvider:
    try:
        return StripeBillingProvider.from_settings()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe billing not configured",
        ) from exc


async def _owned_business(db: AsyncSession, business_id: UUID, owner: User) -> Business:
    try:
        return await BusinessService(db).get_owned_business(business_id, owner.id)
    except StampCardError as exc:
        raise stamp_error_to_http(exc) from exc


@router.post("/checkout", response_model=HostedSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> HostedSessionResponse:
    """Start a Stripe Checkout for the Pro subscription."""

    business = await _owned_business(db, payload.businessId, current_user)
    service = BillingSessionService(db, _provider())
    try:
        session = await service.create_checkout_session(
            business,
            price_id=payload.priceId,
            success_url=payload.successUrl,
            cancel_url=payload.cancelUrl,
        )
    except BillingSessionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except stripe.StripeError as exc:
        logger.error("Stripe checkout session creation failed", business_id=str(payload.businessId), error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create checkout session") from exc
    return HostedSessionResponse(sessionId=session.session_id, url=session.url)


@router.post("/portal", response_model=HostedSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_portal_session(
    payload: PortalSessionRequest,
    current_user: User = Depends(require_business_session),
    db: AsyncSession = Depends(get_session),
) -> HostedSessionResponse:
    """Open the Stripe billing portal for an existing subscriber."""

    business = await _owned_business(db, payload.businessId, current_user)
    service = BillingSessionService(db, _provider())
    try:
        session = await service.create_portal_session(business, return_url=payload.returnUrl)
    except BillingSessionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except stripe.StripeError as exc:
        logger.error("Stripe portal session creation failed", business_id=str(payload.businessId), error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create portal session") from exc
    return HostedSessionResponse(sessionId=session.session_id, url=session.url)

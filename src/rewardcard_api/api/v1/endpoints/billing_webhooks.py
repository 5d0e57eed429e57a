"""Webhook endpoints for billing processors."""

from __future__ import annotations

import hashlib
import json
from typing import Any

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.core.clock import utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.db.session import get_session
from rewardcard_api.models.processor_event import (
    ProcessorEvent,
    ProcessorEventStatusEnum,
    ProcessorProviderEnum,
    claim_processor_event,
    mark_processed,
)
from rewardcard_api.observability.loyalty import get_loyalty_store
from rewardcard_api.services.billing import SubscriptionReconciler
from rewardcard_api.services.billing.providers import StripeBillingProvider
from rewardcard_api.services.loyalty import ConcurrencyConflictError

router = APIRouter(prefix="/billing/webhooks", tags=["billing-webhooks"])

# a redelivery of these is reconciled again instead of acknowledged as duplicate
_REPROCESSABLE_STATUSES = frozenset({ProcessorEventStatusEnum.RECEIVED, ProcessorEventStatusEnum.FAILED})


async def _record_failure(
    db: AsyncSession,
    event: ProcessorEvent,
    event_id: str,
    event_type: str,
    exc: Exception,
) -> None:
    await db.rollback()
    logger.exception("Failed to reconcile Stripe event", event_id=event_id, event_type=event_type)
    mark_processed(
        event,
        status=ProcessorEventStatusEnum.FAILED,
        processed_at=utcnow(),
        error=str(exc),
    )
    await db.commit()
    get_loyalty_store().record_billing_event(event_type, ProcessorEventStatusEnum.FAILED.value)


async def _retrieve_subscription(data_object: dict[str, Any]) -> Any:
    subscription_id = data_object.get("subscription")
    if not isinstance(subscription_id, str) or not subscription_id or not settings.stripe_secret_key:
        return None
    try:
        return await StripeBillingProvider.from_settings().retrieve_subscription(subscription_id)
    except stripe.StripeError as exc:
        logger.warning("Unable to retrieve Stripe subscription", subscription_id=subscription_id, error=str(exc))
        return None


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_session)) -> dict[str, str]:
    """Verify a Stripe notification, record it once and reconcile the business subscription."""

    secret = settings.stripe_webhook_secret
    if not secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook secret not configured")

    payload_bytes = await request.body()
    payload_text = payload_bytes.decode("utf-8")
    payload_hash = hashlib.sha256(payload_bytes).hexdigest()
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature header")

    try:
        StripeBillingProvider.construct_event(payload_text, signature, secret)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook signature verification failed")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe signature") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload body") from exc

    payload_dict: dict[str, Any] = json.loads(payload_text)
    event_id = str(payload_dict.get("id"))
    event_type = str(payload_dict.get("type"))
    data_object: dict[str, Any] = (payload_dict.get("data") or {}).get("object") or {}
    store = get_loyalty_store()

    claim = await claim_processor_event(
        db,
        provider=ProcessorProviderEnum.STRIPE,
        external_id=event_id,
        event_type=event_type,
        payload_hash=payload_hash,
        payload=payload_dict,
    )
    if not claim.is_new and claim.event.status not in _REPROCESSABLE_STATUSES:
        await db.rollback()
        store.record_billing_event(event_type, "duplicate")
        logger.info("Duplicate Stripe event", event_id=event_id, event_type=event_type)
        return {"status": "duplicate"}
    if claim.is_new:
        await db.commit()
    else:
        logger.info(
            "Reprocessing Stripe event",
            event_id=event_id,
            event_type=event_type,
            previous_status=claim.event.status.value,
        )

    subscription = None
    if event_type == "checkout.session.completed":
        subscription = await _retrieve_subscription(data_object)

    try:
        result = await SubscriptionReconciler(db).apply(event_type, data_object, subscription)
    except (ConcurrencyConflictError, SQLAlchemyError) as exc:
        await _record_failure(db, claim.event, event_id, event_type, exc)
        # non-2xx makes Stripe redeliver; the failed row is picked up again
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe event could not be applied, retry later",
        ) from exc
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        await _record_failure(db, claim.event, event_id, event_type, exc)
        return {"status": ProcessorEventStatusEnum.FAILED.value}

    mark_processed(
        claim.event,
        status=ProcessorEventStatusEnum(result.status.value),
        processed_at=utcnow(),
        business_id=result.business_id,
    )
    await db.commit()
    store.record_billing_event(event_type, result.status.value)
    return {"status": result.status.value}

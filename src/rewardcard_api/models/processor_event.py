"""Verified Stripe deliveries, one row per event id."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, UniqueConstraint, func, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.core.clock import utcnow
from rewardcard_api.db.base import Base


class ProcessorProviderEnum(str, Enum):
    STRIPE = "stripe"


class ProcessorEventStatusEnum(str, Enum):
    RECEIVED = "received"
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    UNKNOWN_BUSINESS = "unknown_business"
    FAILED = "failed"


class ProcessorEvent(Base):
    """A webhook delivery that passed signature verification.

    ``(provider, external_id)`` is unique, which is what makes redelivered
    Stripe events detectable. ``status`` holds the reconciliation outcome.
    """

    __tablename__ = "processor_events"
    __table_args__ = (UniqueConstraint("provider", "external_id", name="uq_processor_event_provider_external"),)

    id = Column(postgresql.UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(
        SqlEnum(
            ProcessorProviderEnum,
            name="processor_provider_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    external_id = Column(String(128), nullable=False)
    event_type = Column(String(128), nullable=False)
    payload_hash = Column(String(128), nullable=False)
    payload_json = Column("payload", JSON, nullable=True)
    business_id = Column(
        postgresql.UUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = Column(
        SqlEnum(
            ProcessorEventStatusEnum,
            name="processor_event_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ProcessorEventStatusEnum.RECEIVED,
    )
    error = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)


@dataclass(slots=True)
class ProcessorEventClaim:
    event: ProcessorEvent
    is_new: bool


async def _find_event(session: AsyncSession, provider: ProcessorProviderEnum, external_id: str) -> ProcessorEvent | None:
    result = await session.execute(
        select(ProcessorEvent).where(
            ProcessorEvent.provider == provider,
            ProcessorEvent.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


async def claim_processor_event(
    session: AsyncSession,
    *,
    provider: ProcessorProviderEnum,
    external_id: str,
    event_type: str,
    payload_hash: str,
    payload: dict[str, Any] | None,
) -> ProcessorEventClaim:
    """Insert the delivery row, or return the existing one for a redelivery.

    The row is flushed, not committed. Two concurrent deliveries of the same
    event race on the unique constraint; the loser rolls back and gets the
    winner's row with ``is_new=False``.
    """

    existing = await _find_event(session, provider, external_id)
    if existing is not None:
        return ProcessorEventClaim(event=existing, is_new=False)

    event = ProcessorEvent(
        provider=provider,
        external_id=external_id,
        event_type=event_type,
        payload_hash=payload_hash,
        payload_json=payload,
    )
    session.add(event)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        winner = await _find_event(session, provider, external_id)
        if winner is None:
            raise
        return ProcessorEventClaim(event=winner, is_new=False)
    return ProcessorEventClaim(event=event, is_new=True)


def mark_processed(
    event: ProcessorEvent,
    *,
    status: ProcessorEventStatusEnum,
    processed_at: datetime,
    business_id: UUID | None = None,
    error: str | None = None,
) -> None:
    event.status = status
    event.processed_at = processed_at
    event.error = error
    if business_id is not None:
        event.business_id = business_id

"""Scan handling: member id in, stamp out."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewardcard_api.models.user import User, UserTypeEnum
from rewardcard_api.services.loyalty.card_lifecycle import CardLifecycleService
from rewardcard_api.services.loyalty.errors import NotFoundError
from rewardcard_api.services.loyalty.member_ids import validate_member_id
from rewardcard_api.services.loyalty.stamp_ledger import StampLedgerService, StampResult


@dataclass(slots=True)
class ScanOutcome:
    customer_id: UUID
    customer_name: str | None
    member_id: str
    card_created: bool
    stamp: StampResult


class ScanService:
    """Resolves a scanned member id and issues one stamp for the scanning business."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        lifecycle: CardLifecycleService | None = None,
        ledger: StampLedgerService | None = None,
    ) -> None:
        self._db = db_session
        self._lifecycle = lifecycle or CardLifecycleService(db_session)
        self._ledger = ledger or StampLedgerService(db_session)

    async def find_customer(self, member_id: str) -> User:
        stmt = select(User).where(
            User.member_id == member_id,
            User.user_type == UserTypeEnum.CUSTOMER.value,
        )
        customer = (await self._db.execute(stmt)).scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer", member_id)
        return customer

    async def process_scan(self, *, business_id: UUID, member_id: str, issuer_id: UUID) -> ScanOutcome:
        normalized = validate_member_id(member_id)
        customer = await self.find_customer(normalized)
        customer_id = customer.id
        customer_name = customer.display_name

        lookup = await self._lifecycle.ensure_card(customer_id, business_id)
        stamp = await self._ledger.add_stamp(lookup.card.id, issuer_id)
        return ScanOutcome(
            customer_id=customer_id,
            customer_name=customer_name,
            member_id=normalized,
            card_created=lookup.created,
            stamp=stamp,
        )

import hashlib
import hmac
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewardcard_api import models  # noqa: E402,F401
from rewardcard_api.app import create_app  # noqa: E402
from rewardcard_api.db.base import Base  # noqa: E402
from rewardcard_api.db.session import get_session  # noqa: E402
from rewardcard_api.models.business import Business, BusinessTypeEnum, SubscriptionTierEnum  # noqa: E402
from rewardcard_api.models.stamp_card import StampCard  # noqa: E402
from rewardcard_api.models.transaction import Transaction  # noqa: E402
from rewardcard_api.models.user import User, UserTypeEnum  # noqa: E402
from rewardcard_api.observability.loyalty import get_loyalty_store  # noqa: E402
from rewardcard_api.services.loyalty.quota_policy import apply_usage_policy, usage_table_for  # noqa: E402


class FrozenClock:
    """Deterministic stand-in for ``utcnow`` that tests can move forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class LoyaltyFactory:
    def __init__(self, clock: FrozenClock) -> None:
        self._clock = clock
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def owner(self, session: AsyncSession) -> User:
        index = self._next()
        user = User(
            email=f"owner{index}@example.com",
            display_name=f"Owner {index}",
            user_type=UserTypeEnum.BUSINESS.value,
        )
        session.add(user)
        await session.commit()
        return user

    async def customer(self, session: AsyncSession, *, member_id: str | None = None) -> User:
        index = self._next()
        user = User(
            email=f"customer{index}@example.com",
            display_name=f"Customer {index}",
            user_type=UserTypeEnum.CUSTOMER.value,
            member_id=member_id or f"RC-2026-{100000 + index:06d}",
        )
        session.add(user)
        await session.commit()
        return user

    async def business(
        self,
        session: AsyncSession,
        *,
        owner: User | None = None,
        tier: SubscriptionTierEnum = SubscriptionTierEnum.FREE,
        month_started_at: datetime | None = None,
        **overrides,
    ) -> Business:
        owner = owner or await self.owner(session)
        business = Business(
            owner_id=owner.id,
            name=overrides.pop("name", "Corner Cafe"),
            business_type=BusinessTypeEnum.CAFE,
            email=owner.email,
            total_stamps=overrides.pop("total_stamps", 10),
            reward=overrides.pop("reward", "Free Coffee"),
            color_class="from-orange-500 to-orange-600",
            total_customers=0,
            active_cards=0,
            total_stamps_issued=0,
            tier=tier,
            cancel_at_period_end=False,
            is_active=True,
        )
        apply_usage_policy(business, usage_table_for(tier), now=self._clock())
        if month_started_at is not None:
            business.month_started_at = month_started_at
        for key, value in overrides.items():
            setattr(business, key, value)
        session.add(business)
        await session.commit()
        return business

    async def card(
        self,
        session: AsyncSession,
        business: Business,
        customer: User,
        *,
        stamps: int = 0,
        last_stamp_at: datetime | None = None,
        **overrides,
    ) -> StampCard:
        last = last_stamp_at or self._clock() - timedelta(days=1)
        records = [
            {
                "stamped_at": (last - timedelta(hours=stamps - 1 - position)).isoformat(),
                "stamped_by": str(business.owner_id),
            }
            for position in range(stamps)
        ]
        card = StampCard(
            user_id=customer.id,
            business_id=business.id,
            business_name=business.name,
            business_type=business.business_type,
            reward=business.reward,
            color_class=business.color_class,
            total_stamps=overrides.pop("total_stamps", business.total_stamps),
            current_stamps=stamps,
            stamps_json=records,
            is_completed=False,
            is_redeemed=False,
        )
        for key, value in overrides.items():
            setattr(card, key, value)
        business.active_cards = (business.active_cards or 0) + 1
        business.total_customers = (business.total_customers or 0) + 1
        session.add(card)
        await session.commit()
        return card


def sign_stripe_payload(payload: str, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs webhook deliveries."""

    issued_at = timestamp or int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{issued_at}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={issued_at},v1={digest}"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def factory(clock) -> LoyaltyFactory:
    return LoyaltyFactory(clock)


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    get_loyalty_store().reset()
    yield
    get_loyalty_store().reset()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewardcard.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def stripe_signer():
    return sign_stripe_payload


def fail_audit_commits(session: AsyncSession) -> None:
    """Make every commit that would insert an audit row fail like a database error."""

    original_commit = session.commit

    async def commit() -> None:
        if any(isinstance(pending, Transaction) for pending in session.new):
            raise OperationalError("INSERT INTO transactions", {}, Exception("database is locked"))
        await original_commit()

    session.commit = commit


@pytest.fixture
def broken_audit():
    return fail_audit_commits

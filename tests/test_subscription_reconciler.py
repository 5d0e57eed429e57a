from datetime import datetime, timedelta, timezone

import pytest

from rewardcard_api.core.clock import ensure_aware
from rewardcard_api.models.business import (
    UNLIMITED,
    Business,
    SubscriptionStatusEnum,
    SubscriptionTierEnum,
)
from rewardcard_api.services.billing import ReconcileStatus, SubscriptionReconciler, normalize_status

PERIOD_START = 1772400000
PERIOD_END = 1775078400


def _subscription(status: str = "active", **overrides):
    payload = {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "items": {
            "data": [
                {
                    "price": {"id": "price_pro_monthly"},
                    "current_period_start": PERIOD_START,
                    "current_period_end": PERIOD_END,
                }
            ]
        },
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_checkout_upgrades_to_pro_once(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(session, current_month_stamps=120, month_started_at=clock() - timedelta(days=3))
        reconciler = SubscriptionReconciler(session, clock=clock)
        checkout = {
            "id": "cs_123",
            "customer": "cus_123",
            "subscription": "sub_123",
            "metadata": {"business_id": str(business.id)},
        }

        first = await reconciler.apply("checkout.session.completed", checkout, _subscription())
        second = await reconciler.apply("checkout.session.completed", checkout, _subscription())

        assert first.status == ReconcileStatus.APPLIED
        assert first.business_id == business.id
        assert second.status == ReconcileStatus.UNCHANGED

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.tier == SubscriptionTierEnum.PRO
        assert stored.subscription_status == SubscriptionStatusEnum.ACTIVE
        assert stored.stripe_customer_id == "cus_123"
        assert stored.stripe_subscription_id == "sub_123"
        assert stored.stripe_price_id == "price_pro_monthly"
        assert ensure_aware(stored.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
        assert stored.max_customers == UNLIMITED
        assert stored.max_monthly_stamps == UNLIMITED
        assert stored.max_activity_feed_items == 100
        assert stored.can_upload_logo is True
        assert (stored.min_stamp_card_stamps, stored.max_stamp_card_stamps) == (3, 50)
        assert stored.current_month_stamps == 0


@pytest.mark.asyncio
async def test_checkout_without_subscription_details_uses_current_time(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(session)

        result = await SubscriptionReconciler(session, clock=clock).apply(
            "checkout.session.completed",
            {"customer": "cus_bare", "subscription": "sub_bare", "metadata": {"businessId": str(business.id)}},
        )

        assert result.status == ReconcileStatus.APPLIED
        assert ensure_aware(business.current_period_start) == clock()
        assert business.stripe_customer_id == "cus_bare"


@pytest.mark.asyncio
async def test_subscription_deleted_is_idempotent(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_gone",
            stripe_subscription_id="sub_gone",
            current_month_stamps=900,
        )
        reconciler = SubscriptionReconciler(session, clock=clock)
        deleted = _subscription(status="canceled", id="sub_gone", customer="cus_gone")

        first = await reconciler.apply("customer.subscription.deleted", deleted)
        clock.advance(hours=1)
        second = await reconciler.apply("customer.subscription.deleted", deleted)

        assert first.status == ReconcileStatus.APPLIED
        assert second.status == ReconcileStatus.UNCHANGED

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.tier == SubscriptionTierEnum.FREE
        assert stored.subscription_status == SubscriptionStatusEnum.CANCELED
        assert stored.max_customers == 50
        assert stored.max_monthly_stamps == 500
        assert stored.can_upload_logo is False
        assert stored.current_month_stamps == 0
        assert stored.stripe_customer_id == "cus_gone"


@pytest.mark.asyncio
async def test_subscription_updated_tracks_status_and_cancellation(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_upd",
        )
        reconciler = SubscriptionReconciler(session, clock=clock)
        cancel_at = PERIOD_END
        updated = _subscription(status="trialing", customer="cus_upd", cancel_at_period_end=True, cancel_at=cancel_at)

        result = await reconciler.apply("customer.subscription.updated", updated)
        repeat = await reconciler.apply("customer.subscription.updated", updated)
        unpaid = await reconciler.apply("customer.subscription.updated", _subscription(status="unpaid", customer="cus_upd"))

        assert result.status == ReconcileStatus.APPLIED
        assert repeat.status == ReconcileStatus.UNCHANGED
        assert unpaid.status == ReconcileStatus.APPLIED

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.subscription_status == SubscriptionStatusEnum.PAST_DUE
        assert stored.cancel_at_period_end is False
        assert stored.cancel_at is None
        assert ensure_aware(stored.current_period_start) == datetime.fromtimestamp(PERIOD_START, tz=timezone.utc)
        assert stored.tier == SubscriptionTierEnum.PRO


@pytest.mark.asyncio
async def test_invoice_events_move_status(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_inv",
        )
        reconciler = SubscriptionReconciler(session, clock=clock)

        failed = await reconciler.apply("invoice.payment_failed", {"customer": "cus_inv"})
        assert failed.status == ReconcileStatus.APPLIED
        assert business.subscription_status == SubscriptionStatusEnum.PAST_DUE

        paid = await reconciler.apply(
            "invoice.paid",
            {
                "customer": "cus_inv",
                "lines": {"data": [{"period": {"start": PERIOD_START, "end": PERIOD_END}}]},
            },
        )
        assert paid.status == ReconcileStatus.APPLIED

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.subscription_status == SubscriptionStatusEnum.ACTIVE
        assert ensure_aware(stored.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
        assert stored.tier == SubscriptionTierEnum.PRO


@pytest.mark.asyncio
async def test_unknown_business_and_unhandled_events(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        reconciler = SubscriptionReconciler(session, clock=clock)

        missing = await reconciler.apply("invoice.payment_failed", {"customer": "cus_nobody"})
        bad_metadata = await reconciler.apply(
            "checkout.session.completed",
            {"subscription": "sub_x", "metadata": {"business_id": "not-a-uuid"}},
        )
        ignored = await reconciler.apply("customer.created", {"customer": "cus_nobody"})

        assert missing.status == ReconcileStatus.UNKNOWN_BUSINESS
        assert missing.business_id is None
        assert bad_metadata.status == ReconcileStatus.UNKNOWN_BUSINESS
        assert ignored.status == ReconcileStatus.IGNORED


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("active", SubscriptionStatusEnum.ACTIVE),
        ("trialing", SubscriptionStatusEnum.ACTIVE),
        ("past_due", SubscriptionStatusEnum.PAST_DUE),
        ("unpaid", SubscriptionStatusEnum.PAST_DUE),
        ("paused", SubscriptionStatusEnum.PAST_DUE),
        ("canceled", SubscriptionStatusEnum.CANCELED),
        ("incomplete_expired", SubscriptionStatusEnum.CANCELED),
        ("incomplete", SubscriptionStatusEnum.INCOMPLETE),
        ("something_new", SubscriptionStatusEnum.INCOMPLETE),
        (None, SubscriptionStatusEnum.INCOMPLETE),
    ],
)
def test_normalize_status(raw, expected) -> None:
    assert normalize_status(raw) == expected


@pytest.mark.asyncio
async def test_replayed_checkout_without_subscription_keeps_usage(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_replay",
            stripe_subscription_id="sub_replay",
            current_month_stamps=42,
        )
        reconciler = SubscriptionReconciler(session, clock=clock)
        checkout = {"customer": "cus_replay", "metadata": {"business_id": str(business.id)}}

        same_customer = await reconciler.apply("checkout.session.completed", checkout)
        no_customer = await reconciler.apply(
            "checkout.session.completed", {"metadata": {"business_id": str(business.id)}}
        )

        assert same_customer.status == ReconcileStatus.UNCHANGED
        assert no_customer.status == ReconcileStatus.UNCHANGED

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.current_month_stamps == 42
        assert stored.stripe_subscription_id == "sub_replay"


@pytest.mark.asyncio
async def test_checkout_from_another_customer_is_applied(session_factory, factory, clock) -> None:
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_old",
            current_month_stamps=7,
        )

        result = await SubscriptionReconciler(session, clock=clock).apply(
            "checkout.session.completed",
            {"customer": "cus_new", "metadata": {"business_id": str(business.id)}},
        )

        assert result.status == ReconcileStatus.APPLIED
        assert business.stripe_customer_id == "cus_new"
        assert business.current_month_stamps == 0

import json

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from rewardcard_api.core.settings import settings
from rewardcard_api.models.business import Business, SubscriptionStatusEnum, SubscriptionTierEnum
from rewardcard_api.models.processor_event import ProcessorEvent, ProcessorEventStatusEnum
from rewardcard_api.observability.loyalty import get_loyalty_store
from rewardcard_api.services.billing import SubscriptionReconciler
from rewardcard_api.services.billing.providers import StripeBillingProvider
from rewardcard_api.services.loyalty import ConcurrencyConflictError

WEBHOOK_SECRET = "whsec_test_secret"
WEBHOOK_PATH = "/api/v1/billing/webhooks/stripe"


def _event(event_id: str, event_type: str, data_object: dict) -> str:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }
    )


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_secret_key", "")
    return WEBHOOK_SECRET


@pytest.mark.asyncio
async def test_webhook_requires_configured_secret(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "stripe_webhook_secret", "")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(WEBHOOK_PATH, content="{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_webhook_rejects_missing_and_invalid_signatures(app_with_db, factory, webhook_secret, stripe_signer) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session, stripe_customer_id="cus_sig")

    payload = _event("evt_sig", "invoice.payment_failed", {"customer": "cus_sig"})

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.post(WEBHOOK_PATH, content=payload)
        forged = await client.post(
            WEBHOOK_PATH,
            content=payload,
            headers={"Stripe-Signature": stripe_signer(payload, "whsec_someone_else")},
        )

    assert missing.status_code == 400
    assert forged.status_code == 400
    assert forged.json()["detail"] == "Invalid Stripe signature"

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.subscription_status is None
        events = (await session.execute(select(ProcessorEvent))).scalars().all()
        assert events == []


@pytest.mark.asyncio
async def test_checkout_webhook_upgrades_business(app_with_db, factory, webhook_secret, stripe_signer, monkeypatch) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session)

    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")

    async def fake_retrieve(self, subscription_id):
        assert subscription_id == "sub_web"
        return {
            "id": subscription_id,
            "status": "active",
            "current_period_start": 1772400000,
            "current_period_end": 1775078400,
            "items": {"data": [{"price": {"id": "price_monthly"}}]},
        }

    monkeypatch.setattr(StripeBillingProvider, "retrieve_subscription", fake_retrieve)

    payload = _event(
        "evt_checkout",
        "checkout.session.completed",
        {
            "id": "cs_web",
            "object": "checkout.session",
            "customer": "cus_web",
            "subscription": "sub_web",
            "metadata": {"business_id": str(business.id)},
        },
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=payload,
            headers={"Stripe-Signature": stripe_signer(payload, webhook_secret)},
        )

    assert response.status_code == 200
    assert response.json() == {"status": "applied"}

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.tier == SubscriptionTierEnum.PRO
        assert stored.subscription_status == SubscriptionStatusEnum.ACTIVE
        assert stored.stripe_customer_id == "cus_web"
        assert stored.stripe_price_id == "price_monthly"

        event = (await session.execute(select(ProcessorEvent))).scalar_one()
        assert event.external_id == "evt_checkout"
        assert event.status == ProcessorEventStatusEnum.APPLIED
        assert event.business_id == business.id
        assert event.processed_at is not None

    snapshot = get_loyalty_store().snapshot()
    assert snapshot.billing_events["by_type"] == {"checkout.session.completed": 1}
    assert snapshot.billing_events["by_outcome"] == {"applied": 1}


@pytest.mark.asyncio
async def test_duplicate_delivery_is_acknowledged_once(app_with_db, factory, webhook_secret, stripe_signer) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            stripe_customer_id="cus_dup",
        )

    payload = _event("evt_dup", "customer.subscription.deleted", {"id": "sub_dup", "customer": "cus_dup"})
    headers = {"Stripe-Signature": stripe_signer(payload, webhook_secret)}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post(WEBHOOK_PATH, content=payload, headers=headers)
        second = await client.post(WEBHOOK_PATH, content=payload, headers=headers)

    assert first.json() == {"status": "applied"}
    assert second.json() == {"status": "duplicate"}

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.tier == SubscriptionTierEnum.FREE
        assert stored.subscription_status == SubscriptionStatusEnum.CANCELED
        events = (await session.execute(select(ProcessorEvent))).scalars().all()
        assert len(events) == 1


@pytest.mark.asyncio
async def test_unknown_business_is_recorded(app_with_db, webhook_secret, stripe_signer) -> None:
    app, session_factory = app_with_db
    payload = _event("evt_orphan", "invoice.payment_failed", {"customer": "cus_orphan"})

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=payload,
            headers={"Stripe-Signature": stripe_signer(payload, webhook_secret)},
        )

    assert response.status_code == 200
    assert response.json() == {"status": "unknown_business"}

    async with session_factory() as session:
        event = (await session.execute(select(ProcessorEvent))).scalar_one()
        assert event.status == ProcessorEventStatusEnum.UNKNOWN_BUSINESS
        assert event.business_id is None


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored(app_with_db, webhook_secret, stripe_signer) -> None:
    app, _ = app_with_db
    payload = _event("evt_customer", "customer.created", {"id": "cus_new"})

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=payload,
            headers={"Stripe-Signature": stripe_signer(payload, webhook_secret)},
        )

    assert response.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_conflicted_checkout_is_applied_on_redelivery(
    app_with_db, factory, webhook_secret, stripe_signer, monkeypatch
) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session)

    original_apply = SubscriptionReconciler.apply
    calls = {"count": 0}

    async def conflict_once(self, event_type, data_object, subscription=None):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConcurrencyConflictError(3)
        return await original_apply(self, event_type, data_object, subscription)

    monkeypatch.setattr(SubscriptionReconciler, "apply", conflict_once)

    payload = _event(
        "evt_retry",
        "checkout.session.completed",
        {
            "id": "cs_retry",
            "customer": "cus_retry",
            "subscription": "sub_retry",
            "metadata": {"business_id": str(business.id)},
        },
    )
    headers = {"Stripe-Signature": stripe_signer(payload, webhook_secret)}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post(WEBHOOK_PATH, content=payload, headers=headers)

        async with session_factory() as session:
            event = (await session.execute(select(ProcessorEvent))).scalar_one()
            assert event.status == ProcessorEventStatusEnum.FAILED
            assert event.error

        redelivery = await client.post(WEBHOOK_PATH, content=payload, headers=headers)
        third = await client.post(WEBHOOK_PATH, content=payload, headers=headers)

    assert first.status_code == 503
    assert redelivery.status_code == 200
    assert redelivery.json() == {"status": "applied"}
    assert third.json() == {"status": "duplicate"}

    async with session_factory() as session:
        stored = await session.get(Business, business.id)
        assert stored.tier == SubscriptionTierEnum.PRO
        assert stored.stripe_subscription_id == "sub_retry"

        events = (await session.execute(select(ProcessorEvent))).scalars().all()
        assert len(events) == 1
        assert events[0].status == ProcessorEventStatusEnum.APPLIED
        assert events[0].error is None
        assert events[0].business_id == business.id

    assert get_loyalty_store().snapshot().billing_events["by_outcome"] == {
        "failed": 1,
        "applied": 1,
        "duplicate": 1,
    }


@pytest.mark.asyncio
async def test_malformed_payload_is_acknowledged_as_failed(
    app_with_db, factory, webhook_secret, stripe_signer
) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        await factory.business(session, stripe_customer_id="cus_bad")

    payload = _event(
        "evt_bad_lines",
        "invoice.paid",
        {"customer": "cus_bad", "lines": {"data": ["not-a-line"]}},
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=payload,
            headers={"Stripe-Signature": stripe_signer(payload, webhook_secret)},
        )

    assert response.status_code == 200
    assert response.json() == {"status": "failed"}

    async with session_factory() as session:
        event = (await session.execute(select(ProcessorEvent))).scalar_one()
        assert event.status == ProcessorEventStatusEnum.FAILED

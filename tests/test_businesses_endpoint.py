from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from rewardcard_api.models.business import SubscriptionStatusEnum, SubscriptionTierEnum
from rewardcard_api.models.transaction import Transaction, TransactionTypeEnum
from rewardcard_api.services.loyalty import BusinessService, ConcurrencyConflictError


@pytest.mark.asyncio
async def test_create_business_starts_on_free_plan(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        owner = await factory.owner(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/businesses",
            json={"name": "  Bean There ", "email": "hello@beanthere.test", "businessType": "cafe"},
            headers={"X-Session-User": str(owner.id)},
        )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Bean There"
    assert body["ownerId"] == str(owner.id)
    assert body["totalStamps"] == 10
    assert body["reward"] == "Free Item"
    assert body["subscription"]["tier"] == "free"
    assert body["subscription"]["hasBillingAccount"] is False

    usage = body["usage"]
    assert usage["isPro"] is False
    assert usage["customers"] == {
        "current": 0,
        "limit": 50,
        "remaining": 50,
        "percentage": 0,
        "approachingLimit": False,
    }
    assert usage["monthlyStamps"]["limit"] == 500
    assert (usage["minStampCardStamps"], usage["maxStampCardStamps"]) == (10, 10)
    assert usage["canUploadLogo"] is False
    assert usage["activityFeedLimit"] == 10


@pytest.mark.asyncio
async def test_customer_accounts_cannot_create_businesses(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        customer = await factory.customer(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/businesses",
            json={"name": "Sneaky", "email": "sneaky@example.com"},
            headers={"X-Session-User": str(customer.id)},
        )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_usage_summary_reports_approaching_limits(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session, total_customers=41)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            f"/api/v1/businesses/{business.id}",
            headers={"X-Session-User": str(business.owner_id)},
        )

    assert response.status_code == 200
    customers = response.json()["usage"]["customers"]
    assert customers["percentage"] == 82
    assert customers["remaining"] == 9
    assert customers["approachingLimit"] is True


@pytest.mark.asyncio
async def test_pro_usage_is_unlimited(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(
            session,
            tier=SubscriptionTierEnum.PRO,
            subscription_status=SubscriptionStatusEnum.ACTIVE,
            total_customers=4000,
        )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            f"/api/v1/businesses/{business.id}",
            headers={"X-Session-User": str(business.owner_id)},
        )

    body = response.json()
    assert body["subscription"]["status"] == "active"
    assert body["usage"]["isPro"] is True
    assert body["usage"]["customers"] == {
        "current": 4000,
        "limit": -1,
        "remaining": None,
        "percentage": 0,
        "approachingLimit": False,
    }


@pytest.mark.asyncio
async def test_settings_respect_plan_bounds(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        free = await factory.business(session)
        pro = await factory.business(session, tier=SubscriptionTierEnum.PRO)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        free_stamps = await client.patch(
            f"/api/v1/businesses/{free.id}/settings",
            json={"totalStamps": 12},
            headers={"X-Session-User": str(free.owner_id)},
        )
        free_logo = await client.patch(
            f"/api/v1/businesses/{free.id}/settings",
            json={"logoUrl": "https://cdn.test/logo.png"},
            headers={"X-Session-User": str(free.owner_id)},
        )
        free_reward = await client.patch(
            f"/api/v1/businesses/{free.id}/settings",
            json={"reward": "Free Bagel"},
            headers={"X-Session-User": str(free.owner_id)},
        )
        pro_update = await client.patch(
            f"/api/v1/businesses/{pro.id}/settings",
            json={"totalStamps": 25, "logoUrl": "https://cdn.test/logo.png"},
            headers={"X-Session-User": str(pro.owner_id)},
        )
        pro_too_many = await client.patch(
            f"/api/v1/businesses/{pro.id}/settings",
            json={"totalStamps": 51},
            headers={"X-Session-User": str(pro.owner_id)},
        )

    assert free_stamps.status_code == 400
    assert free_stamps.json()["detail"] == "Number of stamps must be between 10 and 10"
    assert free_logo.status_code == 400
    assert free_reward.status_code == 200
    assert free_reward.json()["reward"] == "Free Bagel"
    assert pro_update.status_code == 200
    assert pro_update.json()["totalStamps"] == 25
    assert pro_update.json()["logoUrl"] == "https://cdn.test/logo.png"
    assert pro_too_many.status_code == 400


@pytest.mark.asyncio
async def test_activity_feed_is_newest_first_and_capped(app_with_db, factory, clock) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session)
        for index in range(12):
            session.add(
                Transaction(
                    type=TransactionTypeEnum.STAMP_ADDED,
                    business_id=business.id,
                    metadata_json={"stamp_number": index + 1},
                    timestamp=clock() + timedelta(minutes=index),
                )
            )
        await session.commit()

    headers = {"X-Session-User": str(business.owner_id)}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        capped = await client.get(f"/api/v1/businesses/{business.id}/activity", headers=headers)
        limited = await client.get(f"/api/v1/businesses/{business.id}/activity?limit=3", headers=headers)

    assert capped.status_code == 200
    numbers = [item["metadata"]["stamp_number"] for item in capped.json()]
    assert numbers == list(range(12, 2, -1))
    assert [item["metadata"]["stamp_number"] for item in limited.json()] == [12, 11, 10]
    assert capped.json()[0]["type"] == "stamp_added"


@pytest.mark.asyncio
async def test_other_owners_cannot_read_business(app_with_db, factory) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session)
        stranger = await factory.owner(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            f"/api/v1/businesses/{business.id}",
            headers={"X-Session-User": str(stranger.id)},
        )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_conflicting_settings_save_returns_conflict(app_with_db, factory, monkeypatch) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        business = await factory.business(session)

    async def always_conflicting(self, business, **changes):
        raise ConcurrencyConflictError(3)

    monkeypatch.setattr(BusinessService, "update_settings", always_conflicting)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.patch(
            f"/api/v1/businesses/{business.id}/settings",
            json={"reward": "Free Bagel"},
            headers={"X-Session-User": str(business.owner_id)},
        )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "conflict"

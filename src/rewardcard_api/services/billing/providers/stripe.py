"""Stripe provider abstractions for subscription billing."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

import stripe

from rewardcard_api.core.settings import settings


@dataclass(slots=True)
class StripeHostedSession:
    """Hosted checkout or billing portal session description."""

    session_id: str
    url: str


class StripeBillingProvider:
    """Thin asynchronous wrapper around the official Stripe SDK."""

    def __init__(self, secret_key: str, webhook_secret: str | None = None) -> None:
        if not secret_key:
            raise ValueError("Stripe secret key must be provided")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        stripe.api_key = secret_key

    @classmethod
    def from_settings(cls) -> "StripeBillingProvider":
        """Build the provider using application settings."""

        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    async def _run(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Execute blocking Stripe SDK calls in a worker thread."""

        return await asyncio.to_thread(func, *args, **kwargs)

    @staticmethod
    def construct_event(payload: str, signature: str, secret: str) -> Any:
        """Verify the signature header and parse the event.

        Raises ``stripe.SignatureVerificationError`` when the signature does
        not match the payload.
        """

        return stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=secret)

    async def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]:
        if not subscription_id:
            raise ValueError("subscription_id is required")
        return await self._run(stripe.Subscription.retrieve, subscription_id)

    async def create_customer(self, *, email: str, business_id: str) -> str:
        """Create a Stripe customer tagged with the owning business."""

        customer = await self._run(
            stripe.Customer.create,
            email=email,
            metadata={"business_id": business_id},
        )
        return str(customer["id"])

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        business_id: str,
        success_url: str,
        cancel_url: str,
    ) -> StripeHostedSession:
        """Create a hosted subscription checkout for the Pro plan."""

        session = await self._run(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"business_id": business_id},
            subscription_data={"metadata": {"business_id": business_id}},
        )
        return StripeHostedSession(session_id=session["id"], url=session["url"])

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> StripeHostedSession:
        session = await self._run(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return StripeHostedSession(session_id=session["id"], url=session["url"])

    @property
    def webhook_secret(self) -> str | None:
        """Expose configured webhook signing secret."""

        return self._webhook_secret


__all__ = ["StripeBillingProvider", "StripeHostedSession"]

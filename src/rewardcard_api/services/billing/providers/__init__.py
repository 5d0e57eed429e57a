"""Payment processor provider adapters for billing operations."""

from .stripe import StripeBillingProvider, StripeHostedSession

__all__ = ["StripeBillingProvider", "StripeHostedSession"]

"""Billing domain services."""

from .sessions import BillingSessionError, BillingSessionService
from .subscriptions import (
    ReconcileResult,
    ReconcileStatus,
    SubscriptionReconciler,
    normalize_status,
)

__all__ = [
    "BillingSessionError",
    "BillingSessionService",
    "ReconcileResult",
    "ReconcileStatus",
    "SubscriptionReconciler",
    "normalize_status",
]

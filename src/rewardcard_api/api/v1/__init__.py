from fastapi import APIRouter

from .endpoints import (
    billing_sessions,
    billing_webhooks,
    businesses,
    health,
    observability,
    stamp_cards,
    users,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(users.router)
router.include_router(businesses.router)
router.include_router(stamp_cards.router)
router.include_router(billing_sessions.router)
router.include_router(billing_webhooks.router)
router.include_router(observability.router)

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rewardcard_api.core.settings import settings
from rewardcard_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "RewardCard API starting",
        environment=settings.environment,
        stamp_cooldown_seconds=settings.stamp_cooldown_seconds,
        usage_window_days=settings.usage_window_days,
        stripe_configured=bool(settings.stripe_secret_key),
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("RewardCard API stopped")


def create_app() -> FastAPI:
    """Application factory for the RewardCard FastAPI service."""
    configure_logging(
        service_name="rewardcard-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="RewardCard API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rewardcard-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app

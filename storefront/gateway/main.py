"""Storefront Billing – Gateway.

FastAPI app hosting the Stripe webhook, plan context, health and metrics.
Run with ``uvicorn storefront.gateway.main:app``.
"""

from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, get_settings
from storefront.core.db import run_migrations
from storefront.core.feature_gates import seed_plans
from storefront.core.instrumentation import router as metrics_router
from storefront.core.instrumentation import setup_instrumentation
from storefront.gateway.routers.billing import router as billing_router

logger = structlog.get_logger()

VERSION = "1.0.0"

settings: Settings = get_settings()


def _parse_cors_origins(raw: str) -> list[str]:
    origins = [item.strip() for item in (raw or "").split(",") if item.strip()]
    return origins or ["http://localhost:3000"]


def _enforce_startup_guards() -> None:
    if not settings.is_production:
        return
    if not settings.stripe_webhook_secret.strip():
        raise RuntimeError("Refusing startup in production without STRIPE_WEBHOOK_SECRET.")
    if not settings.stripe_secret_key.strip():
        raise RuntimeError("Refusing startup in production without STRIPE_SECRET_KEY.")


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[type-arg]
    """Application lifespan: bootstrap schema and plans on startup."""
    _enforce_startup_guards()
    run_migrations()
    # Idempotent, safe to run on every startup
    seed_plans()
    logger.info("storefront.gateway.startup", version=VERSION, env=settings.environment)
    yield
    logger.info("storefront.gateway.shutdown")


app = FastAPI(
    title="Storefront Billing Gateway",
    description="Stripe webhook reconciliation for per-user storefronts",
    version=VERSION,
    lifespan=lifespan,
)

setup_instrumentation(app, settings.log_level)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(billing_router)
app.include_router(metrics_router)


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health endpoint – returns service status."""
    return {
        "status": "ok",
        "service": "storefront-billing",
        "version": VERSION,
    }

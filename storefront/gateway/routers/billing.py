"""storefront/gateway/routers/billing.py: Stripe webhook + plan context.

Endpoints:
    POST /billing/webhook                  → Stripe webhook (HMAC-signed)
    GET  /billing/plan-context/{user_id}   → Plan limits and gate decisions

Stripe events handled:
    checkout.session.completed         → subscription created, optional store transfer
    customer.subscription.created      → subscription created (if not yet recorded)
    customer.subscription.updated      → status / period / plan sync + store reconciliation
    customer.subscription.deleted      → status → CANCELED, all stores deactivated
    invoice.paid / .payment_succeeded  → status → ACTIVE
    invoice.payment_failed             → status → PAST_DUE

Responses:
    200 {"received": true, "status": ...}  processed, duplicate or ignored
                                            (malformed payloads included)
    400                                     signature missing / invalid / stale
    500                                     storage error or missing webhook secret
                                            (Stripe redelivers)

Indexing and page revalidation run as background tasks after the response.
"""
from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config.settings import Settings, get_settings
from storefront.billing.errors import AuthenticationFailed, MalformedEvent
from storefront.billing.events import decode_event
from storefront.billing.processor import BillingEventProcessor
from storefront.billing.repository import UserRepository
from storefront.billing.side_effects import SideEffectOrchestrator
from storefront.billing.signature import verify_signature
from storefront.billing.subscriptions import SubscriptionFetcher
from storefront.core.db import get_db
from storefront.core.feature_gates import FeatureGate, decision_dict
from storefront.core.instrumentation import BILLING_EVENTS
from storefront.gateway.dependencies import get_orchestrator, get_subscription_fetcher

logger = structlog.get_logger()

router = APIRouter(tags=["billing"])


@router.post("/billing/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    fetcher: SubscriptionFetcher = Depends(get_subscription_fetcher),
    orchestrator: SideEffectOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Stripe webhook: HMAC-verified, at-least-once safe."""
    webhook_secret = (settings.stripe_webhook_secret or "").strip()
    if not webhook_secret:
        logger.error("billing.webhook.no_secret_configured")
        return JSONResponse({"error": "webhook secret not configured"}, status_code=500)

    payload = await request.body()
    try:
        raw = verify_signature(
            payload,
            request.headers.get("stripe-signature"),
            webhook_secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except AuthenticationFailed as exc:
        logger.warning("billing.webhook.sig_invalid", error=str(exc))
        return JSONResponse({"error": "webhook signature verification failed"}, status_code=400)

    try:
        event = decode_event(raw)
    except MalformedEvent as exc:
        event_type = str(raw.get("type") or "unknown")
        BILLING_EVENTS.labels(event_type=event_type, outcome="ignored").inc()
        logger.warning("billing.event.skipped", event_type=event_type, error_type="MalformedEvent", reason=str(exc))
        return JSONResponse({"received": True, "status": "ignored", "reason": str(exc)}, status_code=200)

    structlog.contextvars.bind_contextvars(event_id=event.event_id, event_type=event.event_type)
    try:
        logger.info("billing.webhook.received", variant=type(event).__name__)
        try:
            outcome = BillingEventProcessor(db, fetcher).process(event)
        except Exception:
            return JSONResponse({"error": "webhook processing failed"}, status_code=500)

        for batch in outcome.batches:
            background_tasks.add_task(orchestrator.run, batch)

        body: dict[str, Any] = {"received": True, "status": outcome.status}
        if outcome.reason:
            body["reason"] = outcome.reason
        return JSONResponse(body, status_code=200)
    finally:
        structlog.contextvars.unbind_contextvars("event_id", "event_type")


@router.get("/billing/plan-context/{user_id}")
async def plan_context(user_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Current plan limits for a user plus the store/AI gate decisions."""
    if UserRepository(db).get(user_id) is None:
        raise HTTPException(status_code=404, detail="user not found")
    gate = FeatureGate(db, user_id)
    return {
        **gate.context(),
        "can_create_store": decision_dict(gate.check_can_create_store()),
        "can_activate_store": decision_dict(gate.check_can_activate_store()),
        "can_use_ai_rewrite": decision_dict(gate.check_can_use_ai_rewrite()),
    }

"""Billing event router.

``BillingEventProcessor.process`` dispatches a decoded event to its lifecycle
handler, owns the transaction around it and turns the expected non-fatal
conditions into an acknowledged ``ignored`` outcome:

* ``MalformedEvent`` – required metadata missing, a retry cannot fix it.
* ``ReferencedEntityMissing`` – plan / subscription / user not there (yet).
* ``UnknownEvent`` – event type this service does not handle.

Anything else (storage errors included) rolls back and propagates so the
endpoint answers 5xx and Stripe redelivers.
"""

from __future__ import annotations

from typing import Callable

import structlog
from sqlalchemy.orm import Session

from storefront.billing.errors import MalformedEvent, ReferencedEntityMissing
from storefront.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownEvent,
)
from storefront.billing.reconciler import QuotaReconciler
from storefront.billing.repository import (
    PlanRepository,
    SqlStoreRepository,
    SubscriptionRepository,
    UserRepository,
)
from storefront.billing.subscriptions import ProcessingOutcome, SubscriptionFetcher, SubscriptionLifecycle
from storefront.billing.transfer import OwnershipTransferHandler
from storefront.core.instrumentation import BILLING_EVENTS

logger = structlog.get_logger()

__all__ = ["BillingEventProcessor", "ProcessingOutcome"]


class BillingEventProcessor:
    def __init__(self, db: Session, fetcher: SubscriptionFetcher) -> None:
        self._db = db
        stores = SqlStoreRepository(db)
        self._lifecycle = SubscriptionLifecycle(
            subscriptions=SubscriptionRepository(db),
            plans=PlanRepository(db),
            users=UserRepository(db),
            reconciler=QuotaReconciler(stores),
            transfers=OwnershipTransferHandler(stores),
            fetcher=fetcher,
        )
        self._handlers: dict[type[BillingEvent], Callable[..., ProcessingOutcome]] = {
            CheckoutCompleted: self._lifecycle.on_checkout_completed,
            SubscriptionCreated: self._lifecycle.on_subscription_created,
            SubscriptionUpdated: self._lifecycle.on_subscription_updated,
            SubscriptionDeleted: self._lifecycle.on_subscription_deleted,
            InvoicePaid: self._lifecycle.on_invoice_paid,
            InvoicePaymentFailed: self._lifecycle.on_invoice_payment_failed,
        }

    def process(self, event: BillingEvent) -> ProcessingOutcome:
        handler = self._handlers.get(type(event))
        if handler is None:
            outcome = self._unhandled(event)
            BILLING_EVENTS.labels(event_type=event.event_type or "unknown", outcome=outcome.status).inc()
            return outcome

        try:
            outcome = handler(event)
            self._db.commit()
        except (MalformedEvent, ReferencedEntityMissing) as exc:
            self._db.rollback()
            logger.warning(
                "billing.event.skipped",
                error_type=type(exc).__name__,
                reason=str(exc),
            )
            outcome = ProcessingOutcome(status="ignored", reason=str(exc))
        except Exception:
            self._db.rollback()
            BILLING_EVENTS.labels(event_type=event.event_type, outcome="error").inc()
            logger.exception("billing.event.failed")
            raise

        BILLING_EVENTS.labels(event_type=event.event_type, outcome=outcome.status).inc()
        logger.info(
            "billing.event.processed",
            status=outcome.status,
            transitions=len(outcome.transitions),
        )
        return outcome

    @staticmethod
    def _unhandled(event: BillingEvent) -> ProcessingOutcome:
        if not isinstance(event, UnknownEvent):
            # Variant added to events.py without a handler here.
            logger.error("billing.event.no_handler", variant=type(event).__name__)
        else:
            logger.info("billing.event.unhandled_type")
        return ProcessingOutcome(status="ignored", reason=f"unhandled event type {event.event_type!r}")

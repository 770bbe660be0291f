"""Subscription lifecycle handlers.

One method per decoded event variant. Each one mutates the subscription row
through the repositories, runs quota reconciliation where the status change
calls for it, and returns a ``ProcessingOutcome`` carrying the store
transitions for the side-effect orchestrator. Nothing here commits.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import stripe
import structlog

from storefront.billing.errors import MalformedEvent, ReferencedEntityMissing
from storefront.billing.events import (
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    subscription_cancel_at,
    subscription_customer_id,
    subscription_period,
    subscription_price_id,
)
from storefront.billing.reconciler import QuotaReconciler, StoreTransition
from storefront.billing.repository import PlanRepository, SubscriptionRepository, UserRepository
from storefront.billing.status import BLOCKING_STATUSES, SubscriptionStatus, map_stripe_status
from storefront.billing.transfer import OwnershipTransferHandler
from storefront.core.models import Plan

logger = structlog.get_logger()

DEFAULT_PERIOD = timedelta(days=30)
BILLING_INTERVALS = frozenset({"MONTHLY", "YEARLY"})


@dataclass
class ProcessingOutcome:
    status: str                      # processed | duplicate | ignored
    reason: str | None = None
    batches: list[list[StoreTransition]] = field(default_factory=list)

    @property
    def transitions(self) -> list[StoreTransition]:
        return [t for batch in self.batches for t in batch]


def next_month_reset(now: datetime | None = None) -> datetime:
    """First day of the next month, 00:00 UTC.

    The column is a naive ``DateTime`` read back as UTC, so the reset is
    computed in UTC whatever the host timezone.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def period_bounds(subscription: dict[str, Any]) -> tuple[datetime, datetime]:
    """Stripe period bounds, defaulting to now and now + 30 days."""
    start, end = subscription_period(subscription)
    now = datetime.now(timezone.utc)
    return start or now, end or now + DEFAULT_PERIOD


class SubscriptionFetcher(Protocol):
    def retrieve(self, subscription_id: str) -> dict[str, Any]: ...


class StripeSubscriptionFetcher:
    """Loads the full subscription object a checkout session points at."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def retrieve(self, subscription_id: str) -> dict[str, Any]:
        sub = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        return json.loads(str(sub))


class SubscriptionLifecycle:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        plans: PlanRepository,
        users: UserRepository,
        reconciler: QuotaReconciler,
        transfers: OwnershipTransferHandler,
        fetcher: SubscriptionFetcher,
    ) -> None:
        self._subscriptions = subscriptions
        self._plans = plans
        self._users = users
        self._reconciler = reconciler
        self._transfers = transfers
        self._fetcher = fetcher

    # ── Created-class ────────────────────────────────────────────────────

    def on_checkout_completed(self, event: CheckoutCompleted) -> ProcessingOutcome:
        meta = event.metadata
        plan_id = meta.get("planId")
        interval = (meta.get("billingInterval") or "").upper()
        if not plan_id or interval not in BILLING_INTERVALS:
            raise MalformedEvent("checkout session is missing planId or billingInterval")

        ref = event.subscription_ref
        if not ref:
            raise MalformedEvent("checkout session carries no subscription")
        stripe_sub = ref if isinstance(ref, dict) else self._fetcher.retrieve(ref)
        if not stripe_sub.get("id"):
            raise MalformedEvent("checkout subscription has no id")

        user_id = self._resolve_paying_user(meta.get("userId"), event.customer_email, event.customer_name)

        existing = self._subscriptions.get_by_stripe_id(stripe_sub["id"])
        plan = self._require_plan(plan_id) if existing is None else None

        batches: list[list[StoreTransition]] = []
        store_slug = meta.get("storeSlug")
        if store_slug:
            moved = self._transfers.transfer(store_slug, user_id)
            if moved is not None:
                batches.append([moved])

        if existing is not None:
            logger.info(
                "billing.subscription.duplicate",
                stripe_subscription_id=stripe_sub["id"],
                transferred=bool(batches),
            )
            if not batches:
                return ProcessingOutcome(status="duplicate")
            # the moved store counts against the payer's quota
            plan = self._require_plan(existing.plan_id)
            result = self._reconciler.reconcile(user_id, plan.max_stores)
            return ProcessingOutcome(status="processed", batches=batches + _batches(result.transitions))

        outcome = self._create(
            stripe_sub,
            user_id=user_id,
            plan=plan,
            interval=interval,
            customer_id=event.customer_id or subscription_customer_id(stripe_sub),
        )
        outcome.batches = batches + outcome.batches
        if batches:
            outcome.status = "processed"
        return outcome

    def on_subscription_created(self, event: SubscriptionCreated) -> ProcessingOutcome:
        stripe_sub = event.obj
        if self._subscriptions.get_by_stripe_id(stripe_sub.get("id", "")) is not None:
            logger.info("billing.subscription.duplicate", stripe_subscription_id=stripe_sub.get("id"))
            return ProcessingOutcome(status="duplicate")

        meta = event.metadata
        user_id = meta.get("userId")
        if not user_id or not stripe_sub.get("id"):
            raise MalformedEvent("subscription is missing userId metadata")
        if self._users.get(user_id) is None:
            raise ReferencedEntityMissing(f"user {user_id} not found")

        if meta.get("planId"):
            plan = self._require_plan(meta["planId"])
        else:
            price_id = subscription_price_id(stripe_sub)
            plan = self._plans.find_by_price_id(price_id) if price_id else None
            if plan is None:
                raise ReferencedEntityMissing(f"no plan for price {price_id}")

        interval = (meta.get("billingInterval") or "MONTHLY").upper()
        if interval not in BILLING_INTERVALS:
            interval = "MONTHLY"

        return self._create(
            stripe_sub,
            user_id=user_id,
            plan=plan,
            interval=interval,
            customer_id=subscription_customer_id(stripe_sub),
        )

    def _create(
        self,
        stripe_sub: dict[str, Any],
        *,
        user_id: str,
        plan: Plan,
        interval: str,
        customer_id: str | None,
    ) -> ProcessingOutcome:
        start, end = period_bounds(stripe_sub)
        row, created = self._subscriptions.insert_if_absent({
            "user_id": user_id,
            "plan_id": plan.id,
            "status": SubscriptionStatus.ACTIVE.value,
            "billing_interval": interval,
            "stripe_customer_id": customer_id,
            "stripe_subscription_id": stripe_sub["id"],
            "stripe_price_id": subscription_price_id(stripe_sub),
            "current_period_start": start,
            "current_period_end": end,
            "cancel_at": subscription_cancel_at(stripe_sub),
            "ai_rewrites_used_this_month": 0,
            "ai_rewrites_reset_at": next_month_reset(),
        })
        if not created:
            return ProcessingOutcome(status="duplicate")

        logger.info(
            "billing.subscription.created",
            subscription_id=row.id,
            user_id=user_id,
            plan=plan.type,
            interval=interval,
        )
        result = self._reconciler.reconcile(user_id, plan.max_stores)
        return ProcessingOutcome(status="processed", batches=_batches(result.transitions))

    # ── Updates ──────────────────────────────────────────────────────────

    def on_subscription_updated(self, event: SubscriptionUpdated) -> ProcessingOutcome:
        stripe_sub = event.obj
        sub = self._require_subscription(stripe_sub.get("id"))

        status = map_stripe_status(stripe_sub.get("status"))
        start, end = period_bounds(stripe_sub)
        sub.status = status.value
        sub.current_period_start = start
        sub.current_period_end = end
        sub.cancel_at = subscription_cancel_at(stripe_sub)

        price_id = subscription_price_id(stripe_sub)
        if price_id and price_id != sub.stripe_price_id:
            new_plan = self._plans.find_by_price_id(price_id)
            if new_plan is None:
                logger.warning(
                    "billing.subscription.price_unmatched",
                    subscription_id=sub.id,
                    price_id=price_id,
                    kept_plan_id=sub.plan_id,
                )
            else:
                if new_plan.id != sub.plan_id:
                    logger.info(
                        "billing.subscription.plan_changed",
                        subscription_id=sub.id,
                        old_plan_id=sub.plan_id,
                        new_plan_id=new_plan.id,
                    )
                sub.plan_id = new_plan.id
                sub.stripe_price_id = price_id

        logger.info("billing.subscription.updated", subscription_id=sub.id, status=status.value)

        if status is SubscriptionStatus.ACTIVE:
            plan = self._require_plan(sub.plan_id)
            quota = plan.max_stores
        elif status in BLOCKING_STATUSES:
            quota = 0
        else:
            return ProcessingOutcome(status="processed")

        result = self._reconciler.reconcile(sub.user_id, quota)
        return ProcessingOutcome(status="processed", batches=_batches(result.transitions))

    def on_subscription_deleted(self, event: SubscriptionDeleted) -> ProcessingOutcome:
        sub = self._require_subscription(event.obj.get("id"))
        sub.status = SubscriptionStatus.CANCELED.value
        sub.canceled_at = datetime.now(timezone.utc)
        logger.info("billing.subscription.canceled", subscription_id=sub.id, user_id=sub.user_id)

        result = self._reconciler.reconcile(sub.user_id, 0)
        return ProcessingOutcome(status="processed", batches=_batches(result.transitions))

    def on_invoice_paid(self, event: InvoicePaid) -> ProcessingOutcome:
        return self._set_invoice_status(event.subscription_id, SubscriptionStatus.ACTIVE)

    def on_invoice_payment_failed(self, event: InvoicePaymentFailed) -> ProcessingOutcome:
        return self._set_invoice_status(event.subscription_id, SubscriptionStatus.PAST_DUE)

    def _set_invoice_status(self, stripe_subscription_id: str | None, status: SubscriptionStatus) -> ProcessingOutcome:
        if not stripe_subscription_id:
            raise MalformedEvent("invoice is not attached to a subscription")
        sub = self._require_subscription(stripe_subscription_id)
        sub.status = status.value
        logger.info("billing.subscription.invoice_status", subscription_id=sub.id, status=status.value)
        return ProcessingOutcome(status="processed")

    # ── Lookups ──────────────────────────────────────────────────────────

    def _require_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise ReferencedEntityMissing(f"plan {plan_id} not found")
        return plan

    def _require_subscription(self, stripe_subscription_id: str | None):
        if not stripe_subscription_id:
            raise MalformedEvent("event carries no subscription id")
        sub = self._subscriptions.get_by_stripe_id(stripe_subscription_id)
        if sub is None:
            raise ReferencedEntityMissing(f"subscription {stripe_subscription_id} not recorded")
        return sub

    def _resolve_paying_user(self, user_id: str | None, email: str | None, name: str | None) -> str:
        if user_id:
            if self._users.get(user_id) is None:
                raise ReferencedEntityMissing(f"user {user_id} not found")
            return user_id
        if email:
            return self._users.get_or_create_by_email(email, name).id
        raise MalformedEvent("checkout session identifies no paying user")


def _batches(transitions: list[StoreTransition]) -> list[list[StoreTransition]]:
    return [transitions] if transitions else []

"""Storefront Billing – Plan context and feature gates.

Answers "what may this user do right now" from their ACTIVE/TRIALING
subscription, or from the free tier when they have none.

Usage:
    from storefront.core.feature_gates import FeatureGate
    gate = FeatureGate(db, user_id)
    decision = gate.check_can_activate_store()
    if decision.allowed:
        ...
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.billing.status import ENTITLED_STATUSES
from storefront.billing.subscriptions import next_month_reset
from storefront.core.models import Plan, Store, Subscription

logger = structlog.get_logger()

# Used when the user has no entitled subscription.
FREE_TIER_LIMITS: dict[str, object] = {
    "max_stores": 1,
    "max_photos_per_store": 3,
    "ai_rewrites_per_month": 0,
    "custom_domain_enabled": False,
}

_PLAN_LIMIT_KEYS = tuple(FREE_TIER_LIMITS)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None
    remaining: int | None = None
    requires_subscription: bool = False


class FeatureGate:
    """Plan limits for one user. Build one per request; usage changes often."""

    def __init__(self, db: Session, user_id: str) -> None:
        self._db = db
        self._user_id = user_id
        self._subscription: Subscription | None = None
        self._plan: Plan | None = None
        self._load_plan()

    # ── Plan Loading ──────────────────────────────────────────────────────

    def _load_plan(self) -> None:
        sub = self._db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == self._user_id,
                Subscription.status.in_([s.value for s in ENTITLED_STATUSES]),
            )
            .order_by(Subscription.created_at.desc())
        ).scalars().first()
        if sub is None:
            return
        plan = self._db.get(Plan, sub.plan_id)
        if plan is None:
            logger.warning("feature_gate.plan_missing", user_id=self._user_id, plan_id=sub.plan_id)
            return
        self._subscription = sub
        self._plan = plan

    @property
    def has_active_subscription(self) -> bool:
        return self._subscription is not None

    @property
    def limits(self) -> dict[str, object]:
        if self._plan is None:
            return dict(FREE_TIER_LIMITS)
        return {key: getattr(self._plan, key) for key in _PLAN_LIMIT_KEYS}

    def context(self) -> dict[str, object]:
        """Serializable plan context for the admin UI."""
        return {
            "user_id": self._user_id,
            "has_active_subscription": self.has_active_subscription,
            "plan_type": self._plan.type if self._plan else None,
            "plan_name": self._plan.name if self._plan else "Gratuito",
            "status": self._subscription.status if self._subscription else None,
            "limits": self.limits,
            "ai_rewrites_used": self._subscription.ai_rewrites_used_this_month if self._subscription else 0,
            "ai_rewrites_limit": self.limits["ai_rewrites_per_month"],
        }

    # ── Gates ─────────────────────────────────────────────────────────────

    def _store_count(self) -> int:
        return self._db.execute(
            select(func.count()).select_from(Store).where(Store.user_id == self._user_id)
        ).scalar_one()

    def check_can_create_store(self) -> GateDecision:
        max_stores = int(self.limits["max_stores"])
        if self._store_count() < max_stores:
            return GateDecision(allowed=True)
        if not self.has_active_subscription:
            return GateDecision(
                allowed=False,
                reason=f"O plano gratuito permite {max_stores} loja(s). Assine um plano para criar mais lojas.",
                requires_subscription=True,
            )
        return GateDecision(
            allowed=False,
            reason=f"Seu plano {self._plan.name} permite até {max_stores} loja(s). Faça upgrade para criar mais.",
        )

    def check_can_activate_store(self) -> GateDecision:
        if not self.has_active_subscription:
            return GateDecision(
                allowed=False,
                reason="Você precisa de uma assinatura ativa para publicar sua loja.",
                requires_subscription=True,
            )
        return GateDecision(allowed=True)

    def check_can_use_ai_rewrite(self) -> GateDecision:
        if not self.has_active_subscription:
            return GateDecision(
                allowed=False,
                reason="A reescrita com IA está disponível apenas para assinantes.",
                remaining=0,
                requires_subscription=True,
            )
        limit = self._plan.ai_rewrites_per_month
        if limit is None:
            return GateDecision(allowed=True)  # unlimited
        remaining = max(0, limit - self._current_ai_usage())
        if remaining == 0:
            return GateDecision(
                allowed=False,
                reason=f"Você atingiu o limite de {limit} reescritas com IA este mês.",
                remaining=0,
            )
        return GateDecision(allowed=True, remaining=remaining)

    # ── Usage ─────────────────────────────────────────────────────────────

    def _reset_due(self, now: datetime) -> bool:
        reset_at = self._subscription.ai_rewrites_reset_at
        if reset_at is None:
            return True
        if reset_at.tzinfo is None:
            reset_at = reset_at.replace(tzinfo=timezone.utc)
        return now >= reset_at

    def _current_ai_usage(self) -> int:
        if self._reset_due(datetime.now(timezone.utc)):
            return 0
        return self._subscription.ai_rewrites_used_this_month or 0

    def increment_ai_rewrite_usage(self) -> int:
        """Count one AI rewrite, starting a new month first when the reset is due."""
        if self._subscription is None:
            raise ValueError("AI rewrites require an active subscription")
        sub = self._subscription
        if self._reset_due(datetime.now(timezone.utc)):
            sub.ai_rewrites_used_this_month = 0
            sub.ai_rewrites_reset_at = next_month_reset()
            logger.info("feature_gate.ai_usage_reset", user_id=self._user_id)
        sub.ai_rewrites_used_this_month = (sub.ai_rewrites_used_this_month or 0) + 1
        self._db.commit()
        return sub.ai_rewrites_used_this_month


def decision_dict(decision: GateDecision) -> dict[str, object]:
    return asdict(decision)


PLAN_CATALOG: list[dict[str, object]] = [
    {
        "name": "Essencial",
        "type": "ESSENTIAL",
        "description": "Ideal para pequenos negócios que estão começando",
        "monthly_price_cents": 5990,
        "yearly_price_cents": 59700,
        "max_stores": 1,
        "max_photos_per_store": 6,
        "ai_rewrites_per_month": 2,
        "custom_domain_enabled": False,
        "is_highlighted": True,
        "sort_order": 1,
    },
    {
        "name": "Pro",
        "type": "PRO",
        "description": "Para negócios que querem crescer com recursos avançados",
        "monthly_price_cents": 9990,
        "yearly_price_cents": 89700,
        "max_stores": 1,
        "max_photos_per_store": 20,
        "ai_rewrites_per_month": None,
        "custom_domain_enabled": True,
        "sort_order": 2,
    },
    {
        "name": "Agência",
        "type": "AGENCY",
        "description": "Para agências e profissionais que gerenciam múltiplos negócios",
        "monthly_price_cents": 39790,
        "yearly_price_cents": 397000,
        "max_stores": 10,
        "max_photos_per_store": 50,
        "ai_rewrites_per_month": None,
        "custom_domain_enabled": True,
        "sort_order": 3,
    },
]


def seed_plans() -> None:
    """Seed the three standard plans if they don't exist yet. Called at startup.

    Stripe price ids are attached by an admin afterwards; existing rows are
    never overwritten.
    """
    from storefront.core.db import SessionLocal

    db = SessionLocal()
    try:
        added = 0
        for data in PLAN_CATALOG:
            existing = db.execute(select(Plan).where(Plan.type == data["type"])).scalar_one_or_none()
            if existing is None:
                db.add(Plan(**data))
                added += 1
        db.commit()
        logger.info("feature_gate.plans_seeded", added=added)
    except Exception as exc:
        db.rollback()
        logger.warning("feature_gate.plans_seed_failed", error=str(exc))
    finally:
        db.close()

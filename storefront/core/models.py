import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from storefront.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserAccount(Base):
    """Mirror of the auth system's user table (owners and paying customers)."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


# ─── Billing Models ──────────────────────────────────────────────────────────

class Plan(Base):
    """Purchasable tier with a store quota and Stripe price ids."""

    __tablename__ = "plans"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)                 # "Essencial", "Pro", "Agência"
    type = Column(String, unique=True, nullable=False)    # ESSENTIAL | PRO | AGENCY
    description = Column(Text, nullable=True)
    monthly_price_cents = Column(Integer, nullable=False, default=0)
    yearly_price_cents = Column(Integer, nullable=False, default=0)
    stripe_product_id = Column(String, nullable=True)
    stripe_monthly_price_id = Column(String, nullable=True, index=True)
    stripe_yearly_price_id = Column(String, nullable=True, index=True)

    # Feature limits
    max_stores = Column(Integer, nullable=False, default=1)
    max_photos_per_store = Column(Integer, nullable=False, default=6)
    ai_rewrites_per_month = Column(Integer, nullable=True)  # NULL = unlimited
    custom_domain_enabled = Column(Boolean, nullable=False, default=False)

    is_highlighted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


class Subscription(Base):
    """One billing relationship with Stripe. Never hard-deleted."""

    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(String, ForeignKey("plans.id"), nullable=False)

    # ACTIVE | CANCELED | INCOMPLETE | INCOMPLETE_EXPIRED | PAST_DUE | TRIALING | UNPAID
    status = Column(String(30), nullable=False, default="ACTIVE")
    billing_interval = Column(String(10), nullable=False, default="MONTHLY")  # MONTHLY | YEARLY

    stripe_customer_id = Column(String, nullable=True)
    # Load-bearing: the unique constraint is what makes creation idempotent.
    stripe_subscription_id = Column(String, nullable=False)
    stripe_price_id = Column(String, nullable=True)

    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)

    ai_rewrites_used_this_month = Column(Integer, nullable=False, default=0)
    ai_rewrites_reset_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_subscription_id"),
    )


# ─── Storefronts ─────────────────────────────────────────────────────────────

class Store(Base):
    """Tenant-owned storefront whose visibility is gated by the plan quota."""

    __tablename__ = "stores"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    custom_domain = Column(String, unique=True, nullable=True)
    category = Column(String(100), nullable=False)
    city = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_stores_user_created", "user_id", "created_at"),
    )


class StoreTransfer(Base):
    """Immutable audit entry for an ownership change."""

    __tablename__ = "store_transfers"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column(String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    to_user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    initiated_by = Column(String, ForeignKey("users.id"), nullable=False)
    was_activated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now)

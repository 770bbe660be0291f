"""Persistence seams for the billing engine.

The reconciler and the lifecycle handlers only talk to these repositories,
never to the session directly, so they can run against an in-memory fake.
None of the repositories commit; the processor owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.models import Plan, Store, StoreTransfer, Subscription, UserAccount

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoreRef:
    """Snapshot of the store columns reconciliation and side effects need."""

    id: str
    user_id: str
    slug: str
    is_active: bool
    created_at: datetime
    category: str = ""
    city: str = ""
    custom_domain: str | None = None

    @classmethod
    def from_row(cls, row: Store) -> "StoreRef":
        return cls(
            id=row.id,
            user_id=row.user_id,
            slug=row.slug,
            is_active=bool(row.is_active),
            created_at=row.created_at,
            category=row.category or "",
            city=row.city or "",
            custom_domain=row.custom_domain,
        )


class StoreRepository(Protocol):
    def list_for_owner(self, user_id: str) -> list[StoreRef]: ...

    def set_active(self, store_ids: Iterable[str], active: bool) -> int: ...


# ── Subscriptions ────────────────────────────────────────────────────────────

class SubscriptionRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_stripe_id(self, stripe_subscription_id: str) -> Subscription | None:
        return self._db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        ).scalar_one_or_none()

    def insert_if_absent(self, values: dict[str, Any]) -> tuple[Subscription, bool]:
        """Insert a subscription unless its Stripe id is already recorded.

        The unique constraint on ``stripe_subscription_id`` arbitrates
        concurrent deliveries: the loser's insert is a no-op and it re-selects
        the winner's row. Returns ``(row, created)``.
        """
        stripe_id = values["stripe_subscription_id"]
        dialect = self._db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = (
                insert(Subscription)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["stripe_subscription_id"])
            )
            created = self._db.execute(stmt).rowcount == 1
        else:
            created = True
            try:
                with self._db.begin_nested():
                    self._db.add(Subscription(**values))
            except IntegrityError:
                created = False

        row = self.get_by_stripe_id(stripe_id)
        if row is None:
            # Only reachable if the conflicting row vanished in between.
            raise RuntimeError(f"subscription {stripe_id} missing after insert")
        if not created:
            logger.info("billing.subscription.insert_conflict", stripe_subscription_id=stripe_id)
        return row, created


class PlanRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, plan_id: str) -> Plan | None:
        return self._db.get(Plan, plan_id)

    def find_by_price_id(self, price_id: str) -> Plan | None:
        """Match the monthly price id first, then the yearly one."""
        plan = self._db.execute(
            select(Plan).where(Plan.stripe_monthly_price_id == price_id)
        ).scalars().first()
        if plan is not None:
            return plan
        return self._db.execute(
            select(Plan).where(Plan.stripe_yearly_price_id == price_id)
        ).scalars().first()


class UserRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, user_id: str) -> UserAccount | None:
        return self._db.get(UserAccount, user_id)

    def get_or_create_by_email(self, email: str, name: str | None = None) -> UserAccount:
        normalized = email.strip().lower()
        user = self._db.execute(
            select(UserAccount).where(UserAccount.email == normalized)
        ).scalar_one_or_none()
        if user is not None:
            return user
        user = UserAccount(email=normalized, name=(name or "").strip() or normalized.split("@")[0])
        self._db.add(user)
        self._db.flush()
        logger.info("billing.user.created_from_checkout", user_id=user.id)
        return user


# ── Stores ───────────────────────────────────────────────────────────────────

class SqlStoreRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def list_for_owner(self, user_id: str) -> list[StoreRef]:
        rows = self._db.execute(
            select(Store)
            .where(Store.user_id == user_id)
            .order_by(Store.created_at.desc(), Store.id.desc())
        ).scalars().all()
        return [StoreRef.from_row(row) for row in rows]

    def set_active(self, store_ids: Iterable[str], active: bool) -> int:
        ids = list(store_ids)
        if not ids:
            return 0
        result = self._db.execute(
            update(Store)
            .where(Store.id.in_(ids), Store.is_active.is_(not active))
            .values(is_active=active)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def get_by_slug(self, slug: str) -> Store | None:
        return self._db.execute(select(Store).where(Store.slug == slug)).scalar_one_or_none()

    def reassign(self, store: Store, new_owner_id: str, initiated_by: str) -> StoreTransfer:
        """Move ``store`` to ``new_owner_id``, force it active and audit the change."""
        transfer = StoreTransfer(
            store_id=store.id,
            from_user_id=store.user_id,
            to_user_id=new_owner_id,
            initiated_by=initiated_by,
            was_activated=True,
        )
        store.user_id = new_owner_id
        store.is_active = True
        self._db.add(transfer)
        self._db.flush()
        return transfer

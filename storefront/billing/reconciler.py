"""Store quota reconciliation.

Given an owner and the quota of their current plan, decide which stores
should be live and apply only the differences:

1. Load the owner's stores, newest first (``created_at DESC, id DESC``).
2. The first ``min(quota, total)`` stores should be active, the rest inactive.
3. Activate the inactive ones in the first group, deactivate the active ones
   in the second. Stores already in the right state are not touched.

The order is total, so repeated runs converge on the same partition. A rerun
with unchanged inputs writes nothing and yields no transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from storefront.billing.repository import StoreRef, StoreRepository
from storefront.core.instrumentation import STORE_TRANSITIONS

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoreTransition:
    store: StoreRef
    activated: bool

    @property
    def direction(self) -> str:
        return "activated" if self.activated else "deactivated"


@dataclass
class ReconcileResult:
    user_id: str
    quota: int
    activated: list[StoreRef] = field(default_factory=list)
    deactivated: list[StoreRef] = field(default_factory=list)

    @property
    def transitions(self) -> list[StoreTransition]:
        return (
            [StoreTransition(store, True) for store in self.activated]
            + [StoreTransition(store, False) for store in self.deactivated]
        )

    @property
    def changed(self) -> bool:
        return bool(self.activated or self.deactivated)


def partition_by_quota(stores: list[StoreRef], quota: int) -> tuple[list[StoreRef], list[StoreRef]]:
    """Split stores into (should_be_active, should_be_inactive).

    Newest first by (created_at, id); input order is irrelevant.
    """
    if quota < 0:
        raise ValueError(f"quota must be non-negative, got {quota}")
    ordered = sorted(stores, key=lambda s: (s.created_at, s.id), reverse=True)
    cut = min(quota, len(ordered))
    return ordered[:cut], ordered[cut:]


class QuotaReconciler:
    def __init__(self, stores: StoreRepository) -> None:
        self._stores = stores

    def reconcile(self, user_id: str, quota: int) -> ReconcileResult:
        keep, drop = partition_by_quota(self._stores.list_for_owner(user_id), quota)
        result = ReconcileResult(
            user_id=user_id,
            quota=quota,
            activated=[s for s in keep if not s.is_active],
            deactivated=[s for s in drop if s.is_active],
        )

        if not result.changed:
            logger.debug("billing.reconcile.noop", user_id=user_id, quota=quota, stores=len(keep) + len(drop))
            return result

        self._stores.set_active([s.id for s in result.activated], True)
        self._stores.set_active([s.id for s in result.deactivated], False)

        STORE_TRANSITIONS.labels(direction="activated").inc(len(result.activated))
        STORE_TRANSITIONS.labels(direction="deactivated").inc(len(result.deactivated))
        logger.info(
            "billing.reconcile.applied",
            user_id=user_id,
            quota=quota,
            activated=[s.slug for s in result.activated],
            deactivated=[s.slug for s in result.deactivated],
        )
        return result

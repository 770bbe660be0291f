"""Checkout-driven store ownership transfer.

A checkout may be bought for a specific store (``metadata.storeSlug``), e.g.
one an admin prepared for a prospect. When the paying user is not the current
owner, the store moves to them, goes live and the change is audited. The
previous owner's quota is left alone; their own next billing event settles it.
"""

from __future__ import annotations

import structlog

from storefront.billing.reconciler import StoreTransition
from storefront.billing.repository import SqlStoreRepository, StoreRef

logger = structlog.get_logger()


class OwnershipTransferHandler:
    def __init__(self, stores: SqlStoreRepository) -> None:
        self._stores = stores

    def transfer(self, slug: str, new_owner_id: str) -> StoreTransition | None:
        """Reassign the store to ``new_owner_id``.

        Returns the activation transition, or ``None`` when the store is
        unknown or already owned by the paying user.
        """
        store = self._stores.get_by_slug(slug)
        if store is None:
            logger.warning("billing.transfer.store_not_found", slug=slug)
            return None
        if store.user_id == new_owner_id:
            logger.debug("billing.transfer.already_owner", slug=slug, user_id=new_owner_id)
            return None

        previous_owner = store.user_id
        record = self._stores.reassign(store, new_owner_id, initiated_by=new_owner_id)
        logger.info(
            "billing.transfer.completed",
            store_id=store.id,
            slug=slug,
            from_user_id=previous_owner,
            to_user_id=new_owner_id,
            transfer_id=record.id,
        )
        return StoreTransition(StoreRef.from_row(store), activated=True)

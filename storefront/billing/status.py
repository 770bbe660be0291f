"""Stripe subscription status → internal status."""

from __future__ import annotations

from enum import Enum

import structlog

logger = structlog.get_logger()


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"
    UNPAID = "UNPAID"


# Statuses that revoke every store of the owner.
BLOCKING_STATUSES = frozenset({
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.UNPAID,
    SubscriptionStatus.PAST_DUE,
})

# Statuses that grant plan features (free tier otherwise).
ENTITLED_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
})

_STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "trialing": SubscriptionStatus.TRIALING,
    "unpaid": SubscriptionStatus.UNPAID,
    "paused": SubscriptionStatus.CANCELED,
}

# Returned for any status Stripe adds after this table was written. This grants
# access on an unknown condition; it is logged so new values get noticed.
UNMAPPED_STATUS_FALLBACK = SubscriptionStatus.ACTIVE


def map_stripe_status(value: str | None) -> SubscriptionStatus:
    """Translate a Stripe subscription status. Total: never raises.

    Unknown or missing values fall back to ``UNMAPPED_STATUS_FALLBACK`` and
    emit a ``billing.status.unmapped`` warning.
    """
    status = _STRIPE_STATUS_MAP.get(str(value or "").strip().lower())
    if status is None:
        logger.warning("billing.status.unmapped", stripe_status=value, fallback=UNMAPPED_STATUS_FALLBACK.value)
        return UNMAPPED_STATUS_FALLBACK
    return status

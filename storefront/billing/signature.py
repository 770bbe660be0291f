"""Stripe webhook signature verification (timestamped HMAC-SHA256)."""

from __future__ import annotations

import json
from typing import Any

import stripe
import structlog

from storefront.billing.errors import AuthenticationFailed

logger = structlog.get_logger()

DEFAULT_TOLERANCE_SECONDS = 300


def verify_signature(
    payload: bytes,
    sig_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> dict[str, Any]:
    """Verify ``payload`` against the ``stripe-signature`` header and decode it.

    Returns the event as a plain dict. Raises AuthenticationFailed on a missing
    header, a signature mismatch, a timestamp outside ``tolerance`` or a body
    that is not a JSON object. Nothing is retried here; Stripe redelivers.
    """
    if not sig_header:
        raise AuthenticationFailed("missing stripe-signature header")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AuthenticationFailed("payload is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise AuthenticationFailed(str(exc)) from exc

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise AuthenticationFailed("signed payload is not valid JSON") from exc
    if not isinstance(event, dict):
        raise AuthenticationFailed("signed payload is not a JSON object")
    return event

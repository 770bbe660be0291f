"""Error taxonomy for the billing webhook engine.

Only AuthenticationFailed (and genuine storage errors, which are not wrapped
here) surface as non-2xx responses. Everything else is absorbed by the
processor and acknowledged so Stripe does not retry an event that can never
succeed.
"""


class BillingError(Exception):
    """Base exception for billing event processing."""


class AuthenticationFailed(BillingError):
    """Missing, malformed or mismatching webhook signature."""


class MalformedEvent(BillingError):
    """Required metadata is missing; retrying cannot fix the payload."""


class ReferencedEntityMissing(BillingError):
    """A plan, subscription or store the event points at does not exist (yet)."""


class SideEffectFailure(BillingError):
    """A best-effort notification or revalidation failed for one store."""

    def __init__(self, kind: str, target: str, cause: BaseException) -> None:
        super().__init__(f"{kind} failed for {target}: {cause}")
        self.kind = kind
        self.target = target
        self.cause = cause

"""Shared dependencies for the Gateway routers.

Every collaborator the webhook needs is built here so tests can swap it via
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from config.settings import Settings, get_settings
from storefront.billing.side_effects import SideEffectOrchestrator
from storefront.billing.subscriptions import StripeSubscriptionFetcher, SubscriptionFetcher
from storefront.integrations.google_indexing import GoogleIndexingClient
from storefront.integrations.revalidation import RevalidationClient


@lru_cache
def _indexing_client(credentials: str, main_domain: str, timeout: float) -> GoogleIndexingClient:
    # Shared so the OAuth access token survives across deliveries.
    return GoogleIndexingClient(service_account_json=credentials, main_domain=main_domain, timeout=timeout)


def get_subscription_fetcher(settings: Settings = Depends(get_settings)) -> SubscriptionFetcher:
    return StripeSubscriptionFetcher(api_key=settings.stripe_secret_key)


def get_orchestrator(settings: Settings = Depends(get_settings)) -> SideEffectOrchestrator:
    timeout = settings.side_effect_timeout_seconds
    return SideEffectOrchestrator(
        indexer=_indexing_client(settings.google_indexing_credentials, settings.main_domain, timeout),
        revalidator=RevalidationClient(
            base_url=settings.revalidation_url,
            secret=settings.revalidation_secret,
            timeout=timeout,
        ),
        timeout=timeout,
    )

"""Storefront Billing – Pytest Configuration.

Shared fixtures for all tests.
"""

import asyncio
import os

# Force testing mode to allow SQLite fallback in storefront/core/db.py
os.environ["ENVIRONMENT"] = "testing"
if "DATABASE_URL" in os.environ:
    del os.environ["DATABASE_URL"]

import hashlib
import hmac
import json
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable

import pytest
from httpx import ASGITransport, AsyncClient

from config.settings import Settings, get_settings
from storefront.billing.repository import StoreRef
from storefront.billing.side_effects import SideEffectOrchestrator
from storefront.core.db import Base, SessionLocal, engine, run_migrations
from storefront.gateway.dependencies import get_orchestrator, get_subscription_fetcher
from storefront.gateway.main import app

WEBHOOK_SECRET = "whsec_test_secret_1234567890abcdef"


# ── Fakes ──────────────────────────────────────────────────────────────────────

class InMemoryStoreRepository:
    """StoreRepository over a dict; records every set_active call."""

    def __init__(self, stores: Iterable[StoreRef] = ()) -> None:
        self.stores: dict[str, StoreRef] = {s.id: s for s in stores}
        self.writes: list[tuple[list[str], bool]] = []

    def list_for_owner(self, user_id: str) -> list[StoreRef]:
        owned = [s for s in self.stores.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: (s.created_at, s.id), reverse=True)

    def set_active(self, store_ids: Iterable[str], active: bool) -> int:
        ids = [i for i in store_ids if i in self.stores]
        if not ids:
            return 0
        self.writes.append((ids, active))
        changed = 0
        for store_id in ids:
            store = self.stores[store_id]
            if store.is_active != active:
                changed += 1
            self.stores[store_id] = replace(store, is_active=active)
        return changed

    def active_ids(self, user_id: str) -> set[str]:
        return {s.id for s in self.list_for_owner(user_id) if s.is_active}


class FakeIndexer:
    def __init__(self, fail_for: set[str] | None = None, hang_for: set[str] | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self._fail_for = fail_for or set()
        self._hang_for = hang_for or set()

    async def _record(self, kind: str, slug: str) -> None:
        self.calls.append((kind, slug))
        if slug in self._hang_for:
            await asyncio.sleep(10)
        if slug in self._fail_for:
            raise RuntimeError(f"indexing down for {slug}")

    async def notify_activated(self, slug: str, custom_domain: str | None = None) -> None:
        await self._record("activated", slug)

    async def notify_deactivated(self, slug: str, custom_domain: str | None = None) -> None:
        await self._record("deactivated", slug)


class FakeRevalidator:
    def __init__(self, fail: bool = False) -> None:
        self.sitemap_calls = 0
        self.page_calls: list[tuple[str, str | None]] = []
        self._fail = fail

    async def invalidate_sitemap(self) -> None:
        self.sitemap_calls += 1
        if self._fail:
            raise RuntimeError("revalidation down")

    async def invalidate_category_city_pages(self, category_slug: str, city_slug: str | None = None) -> None:
        self.page_calls.append((category_slug, city_slug))
        if self._fail:
            raise RuntimeError("revalidation down")


class FakeFetcher:
    """SubscriptionFetcher returning canned subscription objects by id."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}

    def retrieve(self, subscription_id: str) -> dict[str, Any]:
        return self.subscriptions[subscription_id]


def store_ref(
    store_id: str,
    created_at: datetime,
    *,
    user_id: str = "user-1",
    is_active: bool = False,
    category: str = "Padaria",
    city: str = "São Paulo",
) -> StoreRef:
    return StoreRef(
        id=store_id,
        user_id=user_id,
        slug=f"loja-{store_id}",
        is_active=is_active,
        created_at=created_at,
        category=category,
        city=city,
    )


# ── Stripe helpers ─────────────────────────────────────────────────────────────

def fake_stripe_signature(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Generate a valid Stripe-Signature header value for test payloads."""
    ts = timestamp or int(time.time())
    signed_payload = f"{ts}.{payload.decode()}"
    mac = hmac.new(secret.encode(), signed_payload.encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def stripe_event(event_type: str, obj: dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


def stripe_subscription(
    sub_id: str,
    *,
    status: str = "active",
    price_id: str = "price_essential_monthly",
    customer: str = "cus_test_1",
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    now = int(time.time())
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "metadata": metadata or {},
        "cancel_at": None,
        "items": {"data": [{
            "price": {"id": price_id},
            "current_period_start": now,
            "current_period_end": now + 30 * 86400,
        }]},
    }


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh schema per test."""
    run_migrations()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def revalidator() -> FakeRevalidator:
    return FakeRevalidator()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="testing",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_secret_key="sk_test_dummy",
        side_effect_timeout_seconds=1.0,
    )


@pytest.fixture
async def client(test_settings, indexer, revalidator, fetcher):
    """Async test client for the FastAPI gateway with fake collaborators."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_orchestrator] = lambda: SideEffectOrchestrator(
        indexer, revalidator, timeout=test_settings.side_effect_timeout_seconds
    )
    app.dependency_overrides[get_subscription_fetcher] = lambda: fetcher
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()

"""Best-effort side effects after store visibility changes.

For each transitioned store the indexing notification runs on its own; a
failure (or timeout) is logged, counted and recorded in the result list, and
never stops the other stores. After the batch, the sitemap is revalidated once
and each distinct (category, city) listing once.

The webhook schedules ``run`` as a background task after the core state is
committed, so nothing here delays or changes the acknowledgment.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

import structlog

from storefront.billing.errors import SideEffectFailure
from storefront.billing.reconciler import StoreTransition
from storefront.core.instrumentation import SIDE_EFFECT_FAILURES
from storefront.core.slugs import slugify

logger = structlog.get_logger()


class IndexingNotifier(Protocol):
    async def notify_activated(self, slug: str, custom_domain: str | None = None) -> Any: ...

    async def notify_deactivated(self, slug: str, custom_domain: str | None = None) -> Any: ...


class PageRevalidator(Protocol):
    async def invalidate_sitemap(self) -> Any: ...

    async def invalidate_category_city_pages(self, category_slug: str, city_slug: str | None = None) -> Any: ...


@dataclass(frozen=True)
class SideEffectResult:
    kind: str       # "notify_activated" | "notify_deactivated" | "sitemap" | "category_city"
    target: str     # store slug or revalidated path key
    ok: bool
    error: SideEffectFailure | None = None


class SideEffectOrchestrator:
    def __init__(self, indexer: IndexingNotifier, revalidator: PageRevalidator, timeout: float = 10.0) -> None:
        self._indexer = indexer
        self._revalidator = revalidator
        self._timeout = timeout

    async def _guarded(self, kind: str, target: str, call: Awaitable[Any]) -> SideEffectResult:
        try:
            await asyncio.wait_for(call, timeout=self._timeout)
        except Exception as exc:
            failure = SideEffectFailure(kind, target, exc)
            SIDE_EFFECT_FAILURES.labels(kind=kind).inc()
            logger.warning(
                "billing.side_effect.failed",
                kind=kind,
                target=target,
                error=str(exc) or type(exc).__name__,
            )
            return SideEffectResult(kind=kind, target=target, ok=False, error=failure)
        return SideEffectResult(kind=kind, target=target, ok=True)

    def _notify(self, transition: StoreTransition) -> Awaitable[SideEffectResult]:
        store = transition.store
        if transition.activated:
            call = self._indexer.notify_activated(store.slug, store.custom_domain)
            kind = "notify_activated"
        else:
            call = self._indexer.notify_deactivated(store.slug, store.custom_domain)
            kind = "notify_deactivated"
        return self._guarded(kind, store.slug, call)

    async def run(self, transitions: list[StoreTransition]) -> list[SideEffectResult]:
        if not transitions:
            return []

        results = list(await asyncio.gather(*(self._notify(t) for t in transitions)))

        results.append(await self._guarded("sitemap", "sitemap", self._revalidator.invalidate_sitemap()))

        pairs: dict[tuple[str, str], None] = {}
        for t in transitions:
            pairs.setdefault((slugify(t.store.category), slugify(t.store.city)), None)
        for category_slug, city_slug in pairs:
            if not category_slug:
                continue
            results.append(await self._guarded(
                "category_city",
                f"{category_slug}/{city_slug}",
                self._revalidator.invalidate_category_city_pages(category_slug, city_slug or None),
            ))

        failed = [r for r in results if not r.ok]
        logger.info(
            "billing.side_effects.done",
            stores=len(transitions),
            attempted=len(results),
            failed=len(failed),
        )
        return results

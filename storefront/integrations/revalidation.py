"""Storefront Billing – Frontend Revalidation Client.

The storefront frontend caches the sitemap and the category / category+city
listing pages. This client asks it to drop those paths after stores change
visibility.
"""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger()

SITEMAP_PATH = "/sitemap.xml"


def category_city_paths(category_slug: str, city_slug: str | None = None) -> list[str]:
    paths = [f"/{category_slug}"]
    if city_slug:
        paths.append(f"/{category_slug}/{city_slug}")
    return paths


class RevalidationClient:
    """POSTs ``{"paths": [...]}`` to the frontend revalidation endpoint.

    An empty ``base_url`` disables the client (calls are logged no-ops).
    """

    def __init__(
        self,
        base_url: str,
        secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._secret = secret
        self._timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def revalidate(self, paths: list[str]) -> bool:
        if not self.enabled:
            logger.debug("revalidation.not_configured", paths=paths)
            return False

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(
                self.base_url,
                headers={"x-revalidate-secret": self._secret},
                json={"paths": paths},
            )
            resp.raise_for_status()
        logger.info("revalidation.done", paths=paths)
        return True

    async def invalidate_sitemap(self) -> bool:
        return await self.revalidate([SITEMAP_PATH])

    async def invalidate_category_city_pages(self, category_slug: str, city_slug: str | None = None) -> bool:
        return await self.revalidate(category_city_paths(category_slug, city_slug))

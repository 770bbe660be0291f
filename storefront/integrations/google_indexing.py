"""Storefront Billing – Google Indexing API Client.

Tells Google that a storefront URL went live (URL_UPDATED) or away
(URL_DELETED). Authenticates with a service account through the JWT bearer
flow; the token is cached until shortly before it expires.
"""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

logger = structlog.get_logger()

TOKEN_URL = "https://oauth2.googleapis.com/token"
PUBLISH_URL = "https://indexing.googleapis.com/v3/urlNotifications:publish"
SCOPE = "https://www.googleapis.com/auth/indexing"

URL_UPDATED = "URL_UPDATED"
URL_DELETED = "URL_DELETED"


@dataclass(frozen=True)
class IndexingResult:
    url: str
    notification_type: str
    success: bool
    skipped: bool = False


def build_store_url(slug: str, main_domain: str, custom_domain: str | None = None) -> str:
    if custom_domain:
        return f"https://{custom_domain}"
    return f"https://{slug}.{main_domain}"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


class GoogleIndexingClient:
    """Client for the Google Indexing API.

    Parameters
    ----------
    service_account_json : str
        JSON string of the Google Cloud service account credentials. Empty
        disables the client: every call is logged and skipped.
    main_domain : str
        Domain under which stores without a custom domain are served.
    timeout : float
        Per-request HTTP timeout in seconds.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests).
    """

    def __init__(
        self,
        service_account_json: str,
        main_domain: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.main_domain = main_domain
        self._timeout = timeout
        self._transport = transport
        self._credentials: dict[str, Any] = {}
        self._access_token: str = ""
        self._token_expiry: float = 0

        try:
            self._credentials = json.loads(service_account_json) if service_account_json else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning("google_indexing.invalid_credentials_json")

    @property
    def enabled(self) -> bool:
        return bool(self._credentials.get("client_email") and self._credentials.get("private_key"))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _signed_assertion(self, now: int) -> str:
        header = _b64url(json.dumps({"alg": "RS256", "typ": "JWT"}).encode())
        claim_set = {
            "iss": self._credentials["client_email"],
            "scope": SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        payload = _b64url(json.dumps(claim_set).encode())
        signing_input = f"{header}.{payload}"

        private_key = serialization.load_pem_private_key(
            self._credentials["private_key"].encode(), password=None
        )
        signature = private_key.sign(signing_input.encode(), padding.PKCS1v15(), hashes.SHA256())
        return f"{signing_input}.{_b64url(signature)}"

    async def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expiry - 60:
            return self._access_token

        now = int(time.time())
        async with self._client() as client:
            resp = await client.post(
                TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": self._signed_assertion(now),
                },
            )
            resp.raise_for_status()
            token_data = resp.json()
        self._access_token = token_data["access_token"]
        self._token_expiry = now + token_data.get("expires_in", 3600)
        return self._access_token

    async def publish(self, url: str, notification_type: str) -> IndexingResult:
        """Publish one URL notification. Raises on HTTP errors."""
        if not self.enabled:
            logger.warning("google_indexing.not_configured", url=url)
            return IndexingResult(url=url, notification_type=notification_type, success=False, skipped=True)

        token = await self._get_access_token()
        async with self._client() as client:
            resp = await client.post(
                PUBLISH_URL,
                headers={"Authorization": f"Bearer {token}"},
                json={"url": url, "type": notification_type},
            )
            resp.raise_for_status()

        logger.info("google_indexing.published", url=url, type=notification_type)
        return IndexingResult(url=url, notification_type=notification_type, success=True)

    async def notify_activated(self, slug: str, custom_domain: str | None = None) -> IndexingResult:
        return await self.publish(build_store_url(slug, self.main_domain, custom_domain), URL_UPDATED)

    async def notify_deactivated(self, slug: str, custom_domain: str | None = None) -> IndexingResult:
        return await self.publish(build_store_url(slug, self.main_domain, custom_domain), URL_DELETED)

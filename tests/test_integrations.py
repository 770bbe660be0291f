"""Indexing and revalidation clients (httpx.MockTransport) and the log PII filter."""

import json

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from storefront.core.pii_filter import filter_log_record, mask_email
from storefront.integrations.google_indexing import (
    PUBLISH_URL,
    TOKEN_URL,
    URL_DELETED,
    URL_UPDATED,
    GoogleIndexingClient,
    build_store_url,
)
from storefront.integrations.revalidation import RevalidationClient, category_city_paths


def _service_account() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return json.dumps({"client_email": "indexer@project.iam.gserviceaccount.com", "private_key": pem})


# ──────────────────────────────────────────
# Google Indexing
# ──────────────────────────────────────────


class TestGoogleIndexingClient:

    def setup_method(self) -> None:
        self.requests: list[httpx.Request] = []
        self.publish_status = 200

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if str(request.url) == TOKEN_URL:
                return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3600})
            if str(request.url) == PUBLISH_URL:
                return httpx.Response(self.publish_status, json={})
            return httpx.Response(404)

        self.client = GoogleIndexingClient(
            _service_account(), "paginalocal.com.br", transport=httpx.MockTransport(handler)
        )

    def test_build_store_url(self) -> None:
        assert build_store_url("padaria-sol", "paginalocal.com.br") == "https://padaria-sol.paginalocal.com.br"
        assert build_store_url("padaria-sol", "paginalocal.com.br", "padariasol.com") == "https://padariasol.com"

    @pytest.mark.anyio
    async def test_activation_publishes_url_updated(self) -> None:
        result = await self.client.notify_activated("padaria-sol")

        assert result.success
        assert result.notification_type == URL_UPDATED
        token_req, publish_req = self.requests
        assert b"jwt-bearer" in token_req.content
        assert publish_req.headers["Authorization"] == "Bearer ya29.token"
        assert json.loads(publish_req.content) == {
            "url": "https://padaria-sol.paginalocal.com.br",
            "type": URL_UPDATED,
        }

    @pytest.mark.anyio
    async def test_deactivation_uses_custom_domain(self) -> None:
        result = await self.client.notify_deactivated("padaria-sol", "padariasol.com")
        assert result.notification_type == URL_DELETED
        assert json.loads(self.requests[-1].content)["url"] == "https://padariasol.com"

    @pytest.mark.anyio
    async def test_token_is_cached(self) -> None:
        await self.client.notify_activated("a")
        await self.client.notify_activated("b")
        token_calls = [r for r in self.requests if str(r.url) == TOKEN_URL]
        assert len(token_calls) == 1

    @pytest.mark.anyio
    async def test_http_error_raises(self) -> None:
        self.publish_status = 429
        with pytest.raises(httpx.HTTPStatusError):
            await self.client.notify_activated("padaria-sol")

    @pytest.mark.anyio
    async def test_unconfigured_client_skips(self) -> None:
        client = GoogleIndexingClient("", "paginalocal.com.br")
        assert not client.enabled
        result = await client.notify_activated("padaria-sol")
        assert result.skipped and not result.success

    def test_invalid_credentials_json_disables(self) -> None:
        assert not GoogleIndexingClient("{not json", "paginalocal.com.br").enabled


# ──────────────────────────────────────────
# Revalidation
# ──────────────────────────────────────────


class TestRevalidationClient:

    def setup_method(self) -> None:
        self.requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(200, json={"revalidated": True})

        self.client = RevalidationClient(
            "https://paginalocal.com.br/api/revalidate/",
            secret="s3cret",
            transport=httpx.MockTransport(handler),
        )

    def test_category_city_paths(self) -> None:
        assert category_city_paths("padaria", "sao-paulo") == ["/padaria", "/padaria/sao-paulo"]
        assert category_city_paths("padaria") == ["/padaria"]

    @pytest.mark.anyio
    async def test_sitemap(self) -> None:
        assert await self.client.invalidate_sitemap()
        req = self.requests[0]
        assert str(req.url) == "https://paginalocal.com.br/api/revalidate"
        assert req.headers["x-revalidate-secret"] == "s3cret"
        assert json.loads(req.content) == {"paths": ["/sitemap.xml"]}

    @pytest.mark.anyio
    async def test_category_city(self) -> None:
        await self.client.invalidate_category_city_pages("padaria", "sao-paulo")
        assert json.loads(self.requests[0].content) == {"paths": ["/padaria", "/padaria/sao-paulo"]}

    @pytest.mark.anyio
    async def test_disabled_is_noop(self) -> None:
        assert await RevalidationClient("").invalidate_sitemap() is False


# ──────────────────────────────────────────
# PII Filter
# ──────────────────────────────────────────


class TestPIIFilter:

    def test_mask_email(self) -> None:
        assert mask_email("maria.silva@example.com.br") == "m****@e****.br"

    def test_processor_masks_sensitive_keys_and_embedded_emails(self) -> None:
        event = filter_log_record(None, "info", {
            "event": "billing.user.created_from_checkout",
            "customer_name": "Maria Silva",
            "email": "maria@example.com",
            "error": "no user for maria@example.com",
            "stripe_subscription_id": "sub_1234567890123456",
        })
        assert event["event"] == "billing.user.created_from_checkout"
        assert event["customer_name"] == "M****"
        assert event["email"] == "m****@e****.com"
        assert event["error"] == "no user for m****@e****.com"
        assert event["stripe_subscription_id"] == "sub_1234567890123456"

# src/marketplace_ingest/infrastructure/external_apis/sp_api/client.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Selling Partner API Transport Client.

Thin async client for the two first-party reads the ingestion pipeline needs:

* ``getCatalogItem`` (catalog 2022-04-01): title, brand, summaries.
* ``getCompetitivePricing`` (product pricing v0): offer prices.

Behavior mirrors the Keepa client: transport failures and 5xx are retried
with jittered backoff, 429 surfaces as ``SourceRateLimited`` for the gateway
to handle, and metrics are recorded per endpoint.
"""

from __future__ import annotations

from typing import Any, Final

import httpx

from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.domain.exceptions.ingestion import SourceUnavailable
from marketplace_ingest.infrastructure.external_apis.http_support import (
    DEFAULT_HEADERS,
    is_transient,
    parse_json_object,
    raise_for_status,
)
from marketplace_ingest.infrastructure.external_apis.sp_api.settings import SpApiSettings
from marketplace_ingest.infrastructure.observability.metrics import observe_source_request
from marketplace_ingest.infrastructure.resilience.retry import RetryPolicy, retry_async

_SOURCE: Final[str] = PayloadSource.SP_API.value
_CATALOG_PATH: Final[str] = "/catalog/2022-04-01/items/{asin}"
_PRICING_PATH: Final[str] = "/products/pricing/v0/competitivePrice"
_CATALOG_INCLUDED_DATA: Final[str] = "attributes,summaries"
_DEFAULT_BASE_BACKOFF: Final[float] = 0.25
_DEFAULT_MAX_BACKOFF: Final[float] = 2.5


class SpApiClient:
    """Transport client for SP-API catalog and pricing reads."""

    def __init__(
        self,
        settings: SpApiSettings,
        *,
        http: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the transport client.

        Args:
            settings: Provider settings loaded from environment.
            http: Optional shared ``httpx.AsyncClient``.
            retry_policy: Optional retry configuration for transient failures.

        Raises:
            ValueError: If no access token is configured.
        """
        if not settings.configured or settings.access_token is None:
            raise ValueError("SP_API_ACCESS_TOKEN is not configured")
        self._settings = settings
        self._base_url = settings.base_url.rstrip("/")
        self._timeout = float(settings.timeout_s)
        self._owns_client = http is None
        self._client = http or httpx.AsyncClient(
            timeout=self._timeout, headers=DEFAULT_HEADERS.copy()
        )
        self._auth_headers = {"x-amz-access-token": settings.access_token.get_secret_value()}
        self._retry = retry_policy or RetryPolicy(
            total=settings.max_retries,
            base=_DEFAULT_BASE_BACKOFF,
            cap=_DEFAULT_MAX_BACKOFF,
            jitter=True,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def get_catalog_item(self, asin: str) -> dict[str, Any]:
        """Return the catalog item for one ASIN."""
        params = {
            "marketplaceIds": self._settings.marketplace_id,
            "includedData": _CATALOG_INCLUDED_DATA,
        }
        return await self._get(
            endpoint="getCatalogItem", path=_CATALOG_PATH.format(asin=asin), params=params
        )

    async def get_competitive_pricing(self, asin: str) -> dict[str, Any]:
        """Return competitive pricing for one ASIN.

        The v0 ``payload`` envelope is unwrapped to its first product entry
        when present.
        """
        params = {
            "MarketplaceId": self._settings.marketplace_id,
            "Asins": asin,
            "ItemType": "Asin",
        }
        body = await self._get(endpoint="getCompetitivePricing", path=_PRICING_PATH, params=params)
        envelope = body.get("payload")
        if isinstance(envelope, list):
            first = envelope[0] if envelope else None
            return first if isinstance(first, dict) else {}
        return body

    async def _get(self, *, endpoint: str, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """Issue one GET with retries, error mapping and metrics."""
        url = f"{self._base_url}{path}"

        async def _call() -> dict[str, Any]:
            try:
                response = await self._client.get(
                    url, params=params, headers=self._auth_headers, timeout=self._timeout
                )
            except httpx.RequestError as exc:
                raise SourceUnavailable(
                    "transport_error", source=_SOURCE, details={"error": type(exc).__name__}
                ) from exc
            raise_for_status(_SOURCE, response)
            return parse_json_object(_SOURCE, response)

        with observe_source_request(source=_SOURCE, endpoint=endpoint) as obs:
            try:
                return await retry_async(_call, policy=self._retry, retry_on=is_transient)
            except Exception as exc:
                obs.mark_error(type(exc).__name__)
                raise

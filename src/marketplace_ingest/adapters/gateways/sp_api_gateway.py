# src/marketplace_ingest/adapters/gateways/sp_api_gateway.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Adapter Gateway: SP-API client + token bucket -> per-item payloads.

Implements the ``SpApiListingGateway`` port. Each item costs two calls
(catalog then pricing), each preceded by a token acquisition.

Throttling:
    * Catalog: retried while the bucket's decision allows it.
    * Pricing: backed off once and skipped; pricing is optional.

A failed call for one part does not discard the other; the item payload is
returned when at least one part arrived.
"""

from __future__ import annotations

from contextlib import suppress
from typing import Any, Protocol

from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.domain.exceptions.ingestion import (
    ExternalSourceError,
    SourceRateLimited,
)
from marketplace_ingest.infrastructure.logging.logger import get_json_logger
from marketplace_ingest.infrastructure.observability.metrics import get_rate_limit_waits_total
from marketplace_ingest.infrastructure.rate_limit.token_bucket import RateLimitDecision, TokenBucket

logger = get_json_logger(__name__)


class _SpApiTransport(Protocol):
    async def get_catalog_item(self, asin: str) -> dict[str, Any]: ...

    async def get_competitive_pricing(self, asin: str) -> dict[str, Any]: ...


class SpApiGateway:
    """Rate-limited SP-API item fetcher."""

    def __init__(self, client: _SpApiTransport, bucket: TokenBucket) -> None:
        """Initialize the gateway.

        Args:
            client: SP-API transport (``SpApiClient`` or a test double).
            bucket: Token bucket shared by every SP-API call in the process.
        """
        self._client = client
        self._bucket = bucket

    async def fetch_item(self, asin: str) -> dict[str, Any] | None:
        """Fetch catalog and pricing data for one ASIN.

        Returns:
            ``{"catalogItem": ..., "pricing": ...}`` with the parts that
            arrived, or None when neither did.
        """
        payload: dict[str, Any] = {}

        catalog = await self._fetch_catalog(asin)
        if catalog is not None:
            payload["catalogItem"] = catalog

        pricing = await self._fetch_pricing(asin)
        if pricing is not None:
            payload["pricing"] = pricing

        return payload or None

    async def _fetch_catalog(self, asin: str) -> dict[str, Any] | None:
        while True:
            await self._bucket.acquire(1)
            try:
                catalog = await self._client.get_catalog_item(asin)
            except SourceRateLimited as exc:
                decision = self._throttled(exc)
                if decision.should_retry:
                    await self._bucket.backoff(decision)
                    continue
                logger.warning("sp_api.catalog.throttled_out", extra={"extra": {"asin": asin}})
                return None
            except ExternalSourceError as exc:
                logger.warning(
                    "sp_api.catalog.skipped",
                    extra={"extra": {"asin": asin, "error": exc.code, "details": exc.details}},
                )
                return None
            self._bucket.reset_throttle_count()
            return catalog

    async def _fetch_pricing(self, asin: str) -> dict[str, Any] | None:
        await self._bucket.acquire(1)
        try:
            pricing = await self._client.get_competitive_pricing(asin)
        except SourceRateLimited as exc:
            await self._bucket.backoff(self._throttled(exc))
            logger.warning("sp_api.pricing.throttled", extra={"extra": {"asin": asin}})
            return None
        except ExternalSourceError as exc:
            logger.info(
                "sp_api.pricing.skipped",
                extra={"extra": {"asin": asin, "error": exc.code}},
            )
            return None
        self._bucket.reset_throttle_count()
        return pricing or None

    def _throttled(self, exc: SourceRateLimited) -> RateLimitDecision:
        with suppress(Exception):
            get_rate_limit_waits_total().labels(
                source=PayloadSource.SP_API.value, reason="throttled"
            ).inc()
        return self._bucket.handle_rate_limited(
            retry_after_s=exc.retry_after_s, tokens_remaining=exc.tokens_remaining
        )

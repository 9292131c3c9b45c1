# src/marketplace_ingest/adapters/gateways/keepa_gateway.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Adapter Gateway: Keepa client + token bucket -> product payloads.

This gateway sits on top of the Keepa transport client and provides the
``KeepaProductGateway`` port:

* Waits for enough tokens before every batch (Keepa charges per ASIN).
* On 429, asks the bucket how long to back off and whether to retry; gives
  up on the batch after ``max_batch_attempts``.
* Keeps the bucket in sync with ``X-Rl-RemainingTokens``.
* Splits the multi-product response into one landing payload per ASIN.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import suppress
from typing import Any, Protocol

from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.domain.exceptions.ingestion import SourceRateLimited
from marketplace_ingest.infrastructure.external_apis.keepa.client import KeepaProductResponse
from marketplace_ingest.infrastructure.logging.logger import get_json_logger
from marketplace_ingest.infrastructure.observability.metrics import get_rate_limit_waits_total
from marketplace_ingest.infrastructure.rate_limit.token_bucket import TokenBucket

logger = get_json_logger(__name__)

MAX_BATCH_ATTEMPTS = 3


class _KeepaTransport(Protocol):
    async def product(self, asins: Sequence[str]) -> KeepaProductResponse: ...


class KeepaGateway:
    """Rate-limited Keepa product fetcher."""

    def __init__(
        self,
        client: _KeepaTransport,
        bucket: TokenBucket,
        *,
        batch_size: int = 10,
        max_batch_attempts: int = MAX_BATCH_ATTEMPTS,
    ) -> None:
        """Initialize the gateway.

        Args:
            client: Keepa transport (``KeepaClient`` or a test double).
            bucket: Token bucket shared by every Keepa call in the process.
            batch_size: ASINs per request.
            max_batch_attempts: Attempts per batch before giving up.
        """
        self._client = client
        self._bucket = bucket
        self._batch_size = batch_size
        self._max_attempts = max_batch_attempts

    @property
    def batch_size(self) -> int:
        """Maximum number of ASINs per product request."""
        return self._batch_size

    async def fetch_products(self, asins: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch one batch of products.

        Returns:
            Mapping ASIN -> ``{"products": [product]}``. Returns an empty
            mapping when tokens could not be acquired in time.

        Raises:
            SourceRateLimited: When throttling persists past the retry budget.
            SourceUnavailable | SourceBadRequest | SourceValidationError:
                Non-throttle failures from the client.
        """
        if not asins:
            return {}
        count = len(asins)

        attempt = 0
        while attempt < self._max_attempts:
            attempt += 1
            await self._bucket.wait_for_tokens(count)
            if not await self._bucket.acquire(count):
                logger.warning(
                    "keepa.tokens.unavailable",
                    extra={"extra": {"batch_size": count, "attempt": attempt}},
                )
                continue

            try:
                response = await self._client.product(asins)
            except SourceRateLimited as exc:
                decision = self._bucket.handle_rate_limited(
                    retry_after_s=exc.retry_after_s, tokens_remaining=exc.tokens_remaining
                )
                with suppress(Exception):
                    get_rate_limit_waits_total().labels(
                        source=PayloadSource.KEEPA.value, reason="throttled"
                    ).inc()
                if decision.should_retry and attempt < self._max_attempts:
                    await self._bucket.backoff(decision)
                    continue
                logger.error(
                    "keepa.batch.throttled_out",
                    extra={"extra": {"batch_size": count, "attempts": attempt}},
                )
                raise

            self._bucket.sync_remaining(response.tokens_remaining)
            self._bucket.reset_throttle_count()
            return split_products(response.payload)

        return {}


def split_products(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Split a ``/product`` body into per-ASIN landing payloads."""
    products = payload.get("products")
    result: dict[str, dict[str, Any]] = {}
    if not isinstance(products, list):
        return result
    for product in products:
        if not isinstance(product, dict):
            continue
        asin = product.get("asin")
        if isinstance(asin, str) and asin:
            result[asin.strip().upper()] = {"products": [product]}
    return result

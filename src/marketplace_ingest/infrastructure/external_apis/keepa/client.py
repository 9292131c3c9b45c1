# src/marketplace_ingest/infrastructure/external_apis/keepa/client.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Keepa Transport Client: async, instrumented, bounded retries.

This transport is framework-agnostic and provides:

* Async HTTP (httpx) with per-request timeout.
* Jittered exponential retries for transport failures and 5xx only.
* Deterministic mapping to domain errors (429/4xx/5xx/non-JSON).
* Remaining-token reporting from ``X-Rl-RemainingTokens`` so the caller can
  keep its token bucket in sync.
* Prometheus metrics per call.

429 responses are never retried here; the gateway owns throttle handling
because it holds the token bucket.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final

import httpx

from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.domain.exceptions.ingestion import SourceUnavailable
from marketplace_ingest.infrastructure.external_apis.http_support import (
    DEFAULT_HEADERS,
    REMAINING_TOKENS_HEADER,
    is_transient,
    parse_int_header,
    parse_json_object,
    raise_for_status,
)
from marketplace_ingest.infrastructure.external_apis.keepa.settings import KeepaSettings
from marketplace_ingest.infrastructure.observability.metrics import observe_source_request
from marketplace_ingest.infrastructure.resilience.retry import RetryPolicy, retry_async

_SOURCE: Final[str] = PayloadSource.KEEPA.value
_DEFAULT_BASE_BACKOFF: Final[float] = 0.5
_DEFAULT_MAX_BACKOFF: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class KeepaProductResponse:
    """Parsed ``/product`` response.

    Attributes:
        payload: JSON body.
        tokens_remaining: Value of ``X-Rl-RemainingTokens``, if sent.
    """

    payload: dict[str, Any]
    tokens_remaining: int | None


class KeepaClient:
    """Transport client for the Keepa product endpoint."""

    def __init__(
        self,
        settings: KeepaSettings,
        *,
        http: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the transport client.

        Args:
            settings: Provider settings loaded from environment.
            http: Optional shared ``httpx.AsyncClient``. If omitted, a client
                is created and owned by this instance.
            retry_policy: Optional retry configuration for transient failures.

        Raises:
            ValueError: If no API key is configured.
        """
        if not settings.configured or settings.api_key is None:
            raise ValueError("KEEPA_API_KEY is not configured")
        self._settings = settings
        self._api_key = settings.api_key.get_secret_value()
        self._base_url = settings.base_url.rstrip("/")
        self._timeout = float(settings.timeout_s)
        self._owns_client = http is None
        self._client = http or httpx.AsyncClient(
            timeout=self._timeout, headers=DEFAULT_HEADERS.copy()
        )
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

    async def product(self, asins: Sequence[str]) -> KeepaProductResponse:
        """Call ``/product`` for a batch of ASINs.

        Args:
            asins: Up to ``batch_size`` upper-case ASINs.

        Returns:
            KeepaProductResponse: Body and remaining-token count.

        Raises:
            SourceRateLimited: On 429.
            SourceUnavailable: Transport failure or 5xx after retries.
            SourceBadRequest: Other 4xx.
            SourceValidationError: Body is not a JSON object.
        """
        params: dict[str, Any] = {
            "key": self._api_key,
            "domain": self._settings.domain_id,
            "asin": ",".join(asins),
            "stats": self._settings.stats_days,
            "history": 1,
            "offers": self._settings.offers,
        }
        url = f"{self._base_url}/product"

        async def _call() -> KeepaProductResponse:
            try:
                response = await self._client.get(url, params=params, timeout=self._timeout)
            except httpx.RequestError as exc:
                raise SourceUnavailable(
                    "transport_error", source=_SOURCE, details={"error": type(exc).__name__}
                ) from exc
            raise_for_status(_SOURCE, response)
            return KeepaProductResponse(
                payload=parse_json_object(_SOURCE, response),
                tokens_remaining=parse_int_header(response.headers.get(REMAINING_TOKENS_HEADER)),
            )

        with observe_source_request(source=_SOURCE, endpoint="product") as obs:
            try:
                return await retry_async(_call, policy=self._retry, retry_on=is_transient)
            except Exception as exc:
                obs.mark_error(type(exc).__name__)
                raise

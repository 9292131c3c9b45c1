# src/marketplace_ingest/domain/interfaces/gateways/listing_source_gateways.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Listing Source Gateway Protocols.

Synopsis:
    Domain-level Protocols (PEP 544) for the two external listing data
    sources. Concrete implementations combine an HTTP client with a token
    bucket and live in the adapters layer.

Design:
    * Gateways return raw JSON payloads untouched; flattening is the merge
      engine's job.
    * Failures surface as domain exceptions (``SourceUnavailable``,
      ``SourceBadRequest``, ``SourceRateLimited``, ``SourceValidationError``),
      never as HTTP types.
    * Rate limiting (token acquisition, 429 back-off) happens inside the
      gateway so callers see either a payload or a domain error.

Layer:
    domain/interfaces/gateways
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol


class KeepaProductGateway(Protocol):
    """Third-party price history and market data source."""

    @property
    def batch_size(self) -> int:
        """Maximum number of ASINs per product request."""
        raise NotImplementedError

    async def fetch_products(self, asins: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch product payloads for up to ``batch_size`` ASINs.

        Returns:
            Mapping ASIN -> landing payload (``{"products": [product]}``).
            ASINs the provider did not return are absent.
        """
        raise NotImplementedError


class SpApiListingGateway(Protocol):
    """First-party catalog, pricing and inventory source."""

    async def fetch_item(self, asin: str) -> dict[str, Any] | None:
        """Fetch catalog and pricing data for one ASIN.

        Returns:
            Landing payload with ``catalogItem`` and ``pricing`` keys, or None
            when neither call returned data.
        """
        raise NotImplementedError

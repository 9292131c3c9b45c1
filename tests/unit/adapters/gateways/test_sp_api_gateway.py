# tests/unit/adapters/gateways/test_sp_api_gateway.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""SpApiGateway: catalog and pricing parts fetched independently."""

from __future__ import annotations

from typing import Any

import pytest

from marketplace_ingest.adapters.gateways.sp_api_gateway import SpApiGateway
from marketplace_ingest.domain.exceptions.ingestion import (
    SourceBadRequest,
    SourceRateLimited,
    SourceUnavailable,
)
from marketplace_ingest.infrastructure.rate_limit.token_bucket import (
    ThrottlePolicy,
    sp_api_token_bucket,
)

ASIN = "B000000001"


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class _NoJitter:
    def random(self) -> float:
        return 0.0


class _FakeSpApiClient:
    def __init__(
        self,
        catalog: list[dict[str, Any] | Exception],
        pricing: list[dict[str, Any] | Exception],
    ) -> None:
        self._catalog = catalog
        self._pricing = pricing
        self.catalog_calls = 0
        self.pricing_calls = 0

    async def get_catalog_item(self, asin: str) -> dict[str, Any]:
        self.catalog_calls += 1
        return self._next(self._catalog)

    async def get_competitive_pricing(self, asin: str) -> dict[str, Any]:
        self.pricing_calls += 1
        return self._next(self._pricing)

    @staticmethod
    def _next(queue: list[dict[str, Any] | Exception]) -> dict[str, Any]:
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _gateway(client: _FakeSpApiClient, clock: _Clock, **overrides) -> SpApiGateway:
    params = {"clock": clock, "sleep": clock.sleep, "rng": _NoJitter()}
    params.update(overrides)
    return SpApiGateway(client, sp_api_token_bucket(**params))


@pytest.mark.anyio
async def test_both_parts_are_combined() -> None:
    client = _FakeSpApiClient([{"summaries": [{"itemName": "Widget"}]}], [{"Product": {}}])

    payload = await _gateway(client, _Clock()).fetch_item(ASIN)

    assert payload == {
        "catalogItem": {"summaries": [{"itemName": "Widget"}]},
        "pricing": {"Product": {}},
    }


@pytest.mark.anyio
async def test_catalog_throttle_is_retried() -> None:
    clock = _Clock()
    client = _FakeSpApiClient(
        [SourceRateLimited("rate_limited", retry_after_s=1), {"summaries": []}],
        [{}],
    )

    payload = await _gateway(client, clock).fetch_item(ASIN)

    assert payload == {"catalogItem": {"summaries": []}}
    assert client.catalog_calls == 2
    assert 1.0 in clock.sleeps


@pytest.mark.anyio
async def test_catalog_throttled_out_keeps_pricing() -> None:
    client = _FakeSpApiClient(
        [SourceRateLimited("rate_limited", retry_after_s=0) for _ in range(2)],
        [{"Product": {"CompetitivePricing": {}}}],
    )
    policy = ThrottlePolicy(max_consecutive=1, jitter_ratio=0.0)

    payload = await _gateway(client, _Clock(), policy=policy).fetch_item(ASIN)

    assert payload == {"pricing": {"Product": {"CompetitivePricing": {}}}}
    assert client.catalog_calls == 2


@pytest.mark.anyio
async def test_pricing_throttle_is_not_retried() -> None:
    client = _FakeSpApiClient(
        [{"summaries": []}], [SourceRateLimited("rate_limited", retry_after_s=2)]
    )

    payload = await _gateway(client, _Clock()).fetch_item(ASIN)

    assert payload == {"catalogItem": {"summaries": []}}
    assert client.pricing_calls == 1


@pytest.mark.anyio
async def test_nothing_arrived_returns_none() -> None:
    client = _FakeSpApiClient(
        [SourceBadRequest("bad_request", source="sp_api", details={"status": 404})],
        [SourceUnavailable("upstream_error", source="sp_api")],
    )

    assert await _gateway(client, _Clock()).fetch_item(ASIN) is None

# tests/unit/adapters/gateways/test_keepa_gateway.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""KeepaGateway: token pacing, throttle handling and product splitting."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from marketplace_ingest.adapters.gateways.keepa_gateway import KeepaGateway, split_products
from marketplace_ingest.domain.exceptions.ingestion import SourceRateLimited, SourceUnavailable
from marketplace_ingest.infrastructure.external_apis.keepa.client import KeepaProductResponse
from marketplace_ingest.infrastructure.rate_limit.token_bucket import keepa_token_bucket


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


class _FakeKeepaClient:
    def __init__(self, responses: list[KeepaProductResponse | Exception]) -> None:
        self._responses = responses
        self.calls: list[list[str]] = []

    async def product(self, asins: Sequence[str]) -> KeepaProductResponse:
        self.calls.append(list(asins))
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _ok(*asins: str, tokens: int | None = None) -> KeepaProductResponse:
    return KeepaProductResponse(
        payload={"products": [{"asin": a, "title": f"Item {a}"} for a in asins]},
        tokens_remaining=tokens,
    )


def _bucket(clock: _Clock, **overrides):
    params = {"clock": clock, "sleep": clock.sleep, "rng": _NoJitter(), "initial_tokens": 20}
    params.update(overrides)
    return keepa_token_bucket(**params)


def test_split_products_keys_by_normalized_asin() -> None:
    payload = {"products": [{"asin": " b000000001 "}, {"title": "no asin"}, "junk"]}

    assert split_products(payload) == {"B000000001": {"products": [{"asin": " b000000001 "}]}}
    assert split_products({"error": "x"}) == {}


@pytest.mark.anyio
async def test_fetch_consumes_tokens_and_syncs_balance() -> None:
    clock = _Clock()
    bucket = _bucket(clock)
    client = _FakeKeepaClient([_ok("B000000001", "B000000002", tokens=7)])
    gateway = KeepaGateway(client, bucket, batch_size=2)

    result = await gateway.fetch_products(["B000000001", "B000000002"])

    assert set(result) == {"B000000001", "B000000002"}
    assert result["B000000001"]["products"][0]["title"] == "Item B000000001"
    assert bucket.tokens == 7
    assert clock.sleeps == []
    assert gateway.batch_size == 2


@pytest.mark.anyio
async def test_empty_bucket_waits_before_calling() -> None:
    clock = _Clock()
    bucket = _bucket(clock, initial_tokens=0)
    client = _FakeKeepaClient([_ok("B000000001")])

    await KeepaGateway(client, bucket).fetch_products(["B000000001"])

    assert clock.sleeps and clock.sleeps[0] == pytest.approx(3.0)
    assert len(client.calls) == 1


@pytest.mark.anyio
async def test_throttle_backs_off_then_retries() -> None:
    clock = _Clock()
    bucket = _bucket(clock)
    client = _FakeKeepaClient(
        [SourceRateLimited("rate_limited", retry_after_s=4), _ok("B000000001")]
    )

    result = await KeepaGateway(client, bucket).fetch_products(["B000000001"])

    assert "B000000001" in result
    assert len(client.calls) == 2
    assert 4.0 in clock.sleeps
    assert bucket.consecutive_throttles == 0


@pytest.mark.anyio
async def test_persistent_throttle_raises_after_budget() -> None:
    clock = _Clock()
    bucket = _bucket(clock)
    client = _FakeKeepaClient([SourceRateLimited("rate_limited") for _ in range(2)])

    with pytest.raises(SourceRateLimited):
        await KeepaGateway(client, bucket, max_batch_attempts=2).fetch_products(["B000000001"])

    assert len(client.calls) == 2


@pytest.mark.anyio
async def test_other_source_errors_propagate() -> None:
    clock = _Clock()
    client = _FakeKeepaClient([SourceUnavailable("upstream_error", source="keepa")])

    with pytest.raises(SourceUnavailable):
        await KeepaGateway(client, _bucket(clock)).fetch_products(["B000000001"])


@pytest.mark.anyio
async def test_empty_batch_makes_no_call() -> None:
    client = _FakeKeepaClient([])

    assert await KeepaGateway(client, _bucket(_Clock())).fetch_products([]) == {}
    assert client.calls == []

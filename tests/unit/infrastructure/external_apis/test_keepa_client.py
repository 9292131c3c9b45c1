# tests/unit/infrastructure/external_apis/test_keepa_client.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

import httpx
import pytest
import respx

from marketplace_ingest.domain.exceptions.ingestion import (
    SourceBadRequest,
    SourceRateLimited,
    SourceUnavailable,
)
from marketplace_ingest.infrastructure.external_apis.keepa.client import KeepaClient
from marketplace_ingest.infrastructure.external_apis.keepa.settings import KeepaSettings
from marketplace_ingest.infrastructure.resilience.retry import RetryPolicy

_NO_RETRY = RetryPolicy(total=0, base=0, cap=0, jitter=False)


def _settings() -> KeepaSettings:
    return KeepaSettings(api_key="k-123")  # type: ignore[arg-type]


def test_requires_api_key() -> None:
    with pytest.raises(ValueError):
        KeepaClient(KeepaSettings(api_key=None))


@pytest.mark.anyio
@respx.mock
async def test_product_builds_params_and_reads_remaining_tokens() -> None:
    cfg = _settings()
    route = respx.get(f"{cfg.base_url}/product").mock(
        return_value=httpx.Response(
            200, json={"products": [{"asin": "B000000001"}]}, headers={"X-Rl-RemainingTokens": "17"}
        )
    )
    async with httpx.AsyncClient() as http:
        client = KeepaClient(cfg, http=http)

        response = await client.product(["B000000001", "B000000002"])

    params = route.calls.last.request.url.params
    assert params["key"] == "k-123"
    assert params["asin"] == "B000000001,B000000002"
    assert params["domain"] == "2"
    assert params["stats"] == "90"
    assert params["history"] == "1"
    assert response.payload["products"][0]["asin"] == "B000000001"
    assert response.tokens_remaining == 17


@pytest.mark.anyio
@respx.mock
async def test_429_is_not_retried() -> None:
    cfg = _settings()
    route = respx.get(f"{cfg.base_url}/product").mock(
        return_value=httpx.Response(429, headers={"X-Rl-RemainingTokens": "-5"}, json={})
    )
    async with httpx.AsyncClient() as http:
        client = KeepaClient(cfg, http=http, retry_policy=RetryPolicy(total=3, base=0, cap=0))

        with pytest.raises(SourceRateLimited) as exc:
            await client.product(["B000000001"])

    assert route.call_count == 1
    assert exc.value.tokens_remaining == -5


@pytest.mark.anyio
@respx.mock
async def test_5xx_is_retried_then_succeeds() -> None:
    cfg = _settings()
    route = respx.get(f"{cfg.base_url}/product").mock(
        side_effect=[httpx.Response(502), httpx.Response(200, json={"products": []})]
    )
    async with httpx.AsyncClient() as http:
        client = KeepaClient(
            cfg, http=http, retry_policy=RetryPolicy(total=1, base=0, cap=0, jitter=False)
        )

        response = await client.product(["B000000001"])

    assert route.call_count == 2
    assert response.payload == {"products": []}
    assert response.tokens_remaining is None


@pytest.mark.anyio
@respx.mock
async def test_transport_error_maps_to_unavailable() -> None:
    cfg = _settings()
    respx.get(f"{cfg.base_url}/product").mock(side_effect=httpx.ConnectError("refused"))
    async with httpx.AsyncClient() as http:
        client = KeepaClient(cfg, http=http, retry_policy=_NO_RETRY)

        with pytest.raises(SourceUnavailable) as exc:
            await client.product(["B000000001"])

    assert exc.value.details == {"error": "ConnectError"}


@pytest.mark.anyio
@respx.mock
async def test_4xx_maps_to_bad_request() -> None:
    cfg = _settings()
    respx.get(f"{cfg.base_url}/product").mock(
        return_value=httpx.Response(400, json={"error": {"message": "bad asin"}})
    )
    async with httpx.AsyncClient() as http:
        client = KeepaClient(cfg, http=http, retry_policy=_NO_RETRY)

        with pytest.raises(SourceBadRequest):
            await client.product(["nope"])

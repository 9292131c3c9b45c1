# tests/unit/infrastructure/external_apis/test_sp_api_client.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

import httpx
import pytest
import respx

from marketplace_ingest.domain.exceptions.ingestion import SourceRateLimited, SourceValidationError
from marketplace_ingest.infrastructure.external_apis.sp_api.client import SpApiClient
from marketplace_ingest.infrastructure.external_apis.sp_api.settings import SpApiSettings
from marketplace_ingest.infrastructure.resilience.retry import RetryPolicy

_NO_RETRY = RetryPolicy(total=0, base=0, cap=0, jitter=False)


def _settings() -> SpApiSettings:
    return SpApiSettings(access_token="Atza|token")  # type: ignore[arg-type]


def test_requires_access_token() -> None:
    with pytest.raises(ValueError):
        SpApiClient(SpApiSettings(access_token="  "))  # type: ignore[arg-type]


@pytest.mark.anyio
@respx.mock
async def test_catalog_item_sends_token_and_marketplace() -> None:
    cfg = _settings()
    route = respx.get(f"{cfg.base_url}/catalog/2022-04-01/items/B000000001").mock(
        return_value=httpx.Response(200, json={"asin": "B000000001", "summaries": []})
    )
    async with httpx.AsyncClient() as http:
        client = SpApiClient(cfg, http=http, retry_policy=_NO_RETRY)

        body = await client.get_catalog_item("B000000001")

    request = route.calls.last.request
    assert request.headers["x-amz-access-token"] == "Atza|token"
    assert request.url.params["marketplaceIds"] == "A1F83G8C2ARO7P"
    assert request.url.params["includedData"] == "attributes,summaries"
    assert body["asin"] == "B000000001"


@pytest.mark.anyio
@respx.mock
async def test_competitive_pricing_unwraps_payload_envelope() -> None:
    cfg = _settings()
    product = {"ASIN": "B000000001", "status": "Success", "Product": {}}
    route = respx.get(f"{cfg.base_url}/products/pricing/v0/competitivePrice").mock(
        side_effect=[
            httpx.Response(200, json={"payload": [product]}),
            httpx.Response(200, json={"payload": []}),
        ]
    )
    async with httpx.AsyncClient() as http:
        client = SpApiClient(cfg, http=http, retry_policy=_NO_RETRY)

        assert await client.get_competitive_pricing("B000000001") == product
        assert await client.get_competitive_pricing("B000000001") == {}

    params = route.calls.last.request.url.params
    assert params["Asins"] == "B000000001"
    assert params["ItemType"] == "Asin"


@pytest.mark.anyio
@respx.mock
async def test_429_surfaces_retry_after() -> None:
    cfg = _settings()
    respx.get(f"{cfg.base_url}/catalog/2022-04-01/items/B000000001").mock(
        return_value=httpx.Response(429, headers={"Retry-After": "2"})
    )
    async with httpx.AsyncClient() as http:
        client = SpApiClient(cfg, http=http, retry_policy=_NO_RETRY)

        with pytest.raises(SourceRateLimited) as exc:
            await client.get_catalog_item("B000000001")

    assert exc.value.retry_after_s == 2.0


@pytest.mark.anyio
@respx.mock
async def test_non_json_body_is_schema_error() -> None:
    cfg = _settings()
    respx.get(f"{cfg.base_url}/catalog/2022-04-01/items/B000000001").mock(
        return_value=httpx.Response(200, text="<html>maintenance</html>")
    )
    async with httpx.AsyncClient() as http:
        client = SpApiClient(cfg, http=http, retry_policy=_NO_RETRY)

        with pytest.raises(SourceValidationError):
            await client.get_catalog_item("B000000001")

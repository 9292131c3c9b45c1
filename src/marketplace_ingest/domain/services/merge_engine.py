# src/marketplace_ingest/domain/services/merge_engine.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Flatten, merge and derive listing records.

Purpose:
    Turn the raw payloads of the two external sources into one canonical
    :class:`ListingRecord` per item:

        * ``flatten_keepa``   -> third-party market observations.
        * ``flatten_sp_api``  -> first-party ("our") commercial state.
        * ``merge_records``   -> field-level precedence between the two.
        * ``derive_fields``   -> days of cover and status flags.

Layer:
    domain/services

Notes:
    - All functions are pure and deterministic. Anything time-dependent takes
      an explicit ``as_of``; nothing here reads the wall clock.
    - Fallbacks trigger on ``None`` only. A legitimate ``0`` or ``False``
      from the preferred source wins over the other source.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from marketplace_ingest.domain.entities.listing_record import ListingRecord
from marketplace_ingest.domain.services.coercion import (
    round_money,
    to_boolean,
    to_integer,
    to_number,
    to_text,
)

__all__ = [
    "TRANSFORM_VERSION",
    "UK_VAT_RATE",
    "PriceStats",
    "keepa_minutes_to_datetime",
    "calculate_price_stats",
    "percentile",
    "flatten_keepa",
    "flatten_sp_api",
    "merge_records",
    "derive_fields",
    "FIRST_PARTY_FIELDS",
    "THIRD_PARTY_FIELDS",
]

TRANSFORM_VERSION = 1
UK_VAT_RATE = 0.20

# Keepa timestamps are minutes since 2011-01-01; this offset maps them onto
# minutes since the Unix epoch.
KEEPA_EPOCH_OFFSET_MINUTES = 21_564_000
PRICE_WINDOW_DAYS = 90
MAX_REASONABLE_PRICE = 100_000_000

# Keepa ``stats.current`` indexes.
_SALES_RANK_INDEX = 3
_NEW_OFFER_COUNT_INDEX = 11
_NEW_CONDITION = 1

# Our own commercial state: SP-API first, Keepa as fallback.
FIRST_PARTY_FIELDS: tuple[str, ...] = (
    "title",
    "brand",
    "price_inc_vat",
    "price_ex_vat",
    "list_price",
    "total_stock",
    "fulfillment_channel",
    "units_7d",
    "units_30d",
    "units_90d",
)

# External market observations: Keepa first, SP-API as fallback.
THIRD_PARTY_FIELDS: tuple[str, ...] = (
    "category_path",
    "buy_box_price",
    "buy_box_seller_id",
    "buy_box_is_fba",
    "seller_count",
    "keepa_has_data",
    "keepa_last_update",
    "keepa_price_p25_90d",
    "keepa_price_median_90d",
    "keepa_price_p75_90d",
    "keepa_lowest_90d",
    "keepa_highest_90d",
    "keepa_sales_rank_latest",
    "keepa_new_offers",
    "keepa_used_offers",
    "price_volatility_score",
)


@dataclass(frozen=True, slots=True)
class PriceStats:
    """90-day price distribution in minor units."""

    p25: int | None = None
    median: int | None = None
    p75: int | None = None
    lowest: int | None = None
    highest: int | None = None
    volatility: float | None = None


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _first_value(items: Any, key: str = "value") -> Any:
    seq = _as_list(items)
    if not seq:
        return None
    return _as_mapping(seq[0]).get(key)


def _index(seq: Sequence[Any], idx: int) -> Any:
    return seq[idx] if len(seq) > idx else None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def keepa_minutes_to_datetime(keepa_minutes: int | float) -> datetime | None:
    """Convert a Keepa minute timestamp to an aware UTC datetime.

    Returns None when the value is outside the platform's timestamp range.
    """
    return _utc_from_seconds((keepa_minutes + KEEPA_EPOCH_OFFSET_MINUTES) * 60)


def _utc_from_seconds(seconds: int | float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def percentile(sorted_values: Sequence[int], p: float) -> int:
    """Linear-interpolated percentile over an ascending sequence.

    Args:
        sorted_values: Non-empty, ascending values.
        p: Percentile in [0, 100].

    Returns:
        int: The percentile, rounded to the nearest integer.
    """
    idx = (p / 100) * (len(sorted_values) - 1)
    lower = math.floor(idx)
    upper = math.ceil(idx)
    if lower == upper:
        return int(sorted_values[lower])
    low, high = sorted_values[lower], sorted_values[upper]
    interpolated = low + (high - low) * (idx - lower)
    return _round_half_up(interpolated)


def calculate_price_stats(
    history: Sequence[Any] | None,
    *,
    as_of: datetime,
    days: int = PRICE_WINDOW_DAYS,
) -> PriceStats:
    """Compute price percentiles and volatility from a Keepa CSV series.

    Args:
        history: Flat ``[keepa_minutes, price, keepa_minutes, price, ...]``.
        as_of: Reference time for the window.
        days: Window length in days.

    Returns:
        PriceStats: All None when no point survives the filters.
    """
    if not history:
        return PriceStats()

    cutoff = as_of - timedelta(days=days)
    prices: list[int] = []
    for i in range(0, len(history) - 1, 2):
        minutes = to_number(history[i])
        price = to_number(history[i + 1])
        if minutes is None or price is None:
            continue
        observed_at = keepa_minutes_to_datetime(minutes)
        if observed_at is None or observed_at < cutoff:
            continue
        # -1 marks "no offer"; huge values are provider sentinels.
        if 0 < price < MAX_REASONABLE_PRICE:
            prices.append(int(price))

    if not prices:
        return PriceStats()

    prices.sort()
    mean = sum(prices) / len(prices)
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    volatility = round(math.sqrt(variance) / mean, 4) if mean > 0 else 0.0

    return PriceStats(
        p25=percentile(prices, 25),
        median=percentile(prices, 50),
        p75=percentile(prices, 75),
        lowest=prices[0],
        highest=prices[-1],
        volatility=volatility,
    )


# --------------------------------------------------------------------------- #
# Flatten                                                                     #
# --------------------------------------------------------------------------- #


def flatten_keepa(payload: Mapping[str, Any] | None, *, as_of: datetime) -> ListingRecord:
    """Flatten a Keepa ``/product`` response for a single item.

    Args:
        payload: Raw Keepa response (``{"products": [...]}``) or None.
        as_of: Reference time for the 90-day price window.

    Returns:
        ListingRecord: Third-party fields; ``keepa_has_data`` is False when
        the response carries no product.
    """
    products = _as_list(_as_mapping(payload).get("products"))
    if not products:
        return ListingRecord(keepa_has_data=False)

    product = _as_mapping(products[0])
    stats = _as_mapping(product.get("stats"))
    current = _as_list(stats.get("current"))
    csv = _as_list(product.get("csv"))

    price_stats = calculate_price_stats(
        _as_list(_index(csv, 1)) if csv else None, as_of=as_of
    )

    tree = _as_list(product.get("categoryTree"))
    category_names = [
        name for name in (to_text(_as_mapping(c).get("name")) for c in tree) if name is not None
    ]

    offers = [_as_mapping(o) for o in _as_list(product.get("offers"))]
    new_offers = sum(1 for o in offers if to_integer(o.get("condition")) == _NEW_CONDITION)
    used_offers = len(offers) - new_offers
    offer_count = to_integer(_index(current, _NEW_OFFER_COUNT_INDEX))

    last_update = to_integer(product.get("lastUpdate"))
    buy_box_price = to_number(stats.get("buyBoxPrice"))
    seller_history = _as_list(product.get("buyBoxSellerIdHistory"))

    return ListingRecord(
        title=to_text(product.get("title")),
        brand=to_text(product.get("brand")),
        category_path=" > ".join(category_names) or None,
        buy_box_price=round_money(buy_box_price / 100) if buy_box_price else None,
        buy_box_seller_id=to_text(seller_history[-1]) if seller_history else None,
        buy_box_is_fba=to_boolean(product.get("buyBoxIsFBA")),
        seller_count=offer_count,
        keepa_has_data=True,
        keepa_last_update=_utc_from_seconds(last_update) if last_update else None,
        keepa_price_p25_90d=price_stats.p25,
        keepa_price_median_90d=price_stats.median,
        keepa_price_p75_90d=price_stats.p75,
        keepa_lowest_90d=price_stats.lowest,
        keepa_highest_90d=price_stats.highest,
        keepa_sales_rank_latest=to_integer(_index(current, _SALES_RANK_INDEX)),
        keepa_new_offers=new_offers if new_offers else offer_count,
        keepa_used_offers=used_offers if used_offers else None,
        price_volatility_score=price_stats.volatility,
    )


def flatten_sp_api(payload: Mapping[str, Any] | None) -> ListingRecord:
    """Flatten a combined SP-API payload for a single item.

    Args:
        payload: ``{"catalogItem", "pricing", "inventory", "sales"}``; a bare
            catalog item is also accepted.

    Returns:
        ListingRecord: First-party fields.
    """
    if not payload:
        return ListingRecord()

    catalog = _as_mapping(payload.get("catalogItem")) or _as_mapping(payload)
    pricing = _as_mapping(payload.get("pricing"))
    inventory = _as_mapping(payload.get("inventory"))
    sales = _as_mapping(payload.get("sales"))

    attributes = _as_mapping(catalog.get("attributes"))
    summaries = _as_list(catalog.get("summaries"))
    summary = _as_mapping(summaries[0]) if summaries else {}
    title = (
        to_text(_first_value(attributes.get("item_name")))
        or to_text(catalog.get("title"))
        or to_text(summary.get("itemName"))
    )
    brand = (
        to_text(_first_value(attributes.get("brand")))
        or to_text(catalog.get("brand"))
        or to_text(summary.get("brand"))
    )

    price_inc_vat: float | None = None
    list_price: float | None = None
    offers = [_as_mapping(o) for o in _as_list(pricing.get("offers"))]
    if offers:
        mine = next((o for o in offers if to_boolean(o.get("isMine"))), offers[0])
        price_inc_vat = to_number(_as_mapping(mine.get("listingPrice")).get("amount"))
        list_price = to_number(_as_mapping(mine.get("regularPrice")).get("amount"))

    total_stock: int | None = None
    channel: str | None = None
    availability = [_as_mapping(a) for a in _as_list(inventory.get("fulfillmentAvailability"))]
    if "fulfillmentAvailability" in inventory:
        total_stock = sum(to_integer(a.get("quantity")) or 0 for a in availability)
        channel = (
            to_text(availability[0].get("fulfillmentChannelCode")) if availability else None
        ) or "FBM"

    return ListingRecord(
        title=title,
        brand=brand,
        price_inc_vat=price_inc_vat,
        price_ex_vat=(
            round_money(price_inc_vat / (1 + UK_VAT_RATE)) if price_inc_vat is not None else None
        ),
        list_price=list_price,
        total_stock=total_stock,
        fulfillment_channel=channel,
        units_7d=to_integer(sales.get("unitsOrdered7d")),
        units_30d=to_integer(sales.get("unitsOrdered30d")),
        units_90d=to_integer(sales.get("unitsOrdered90d")),
    )


# --------------------------------------------------------------------------- #
# Merge & derive                                                              #
# --------------------------------------------------------------------------- #


def _prefer(primary: Any, fallback: Any) -> Any:
    return primary if primary is not None else fallback


def merge_records(keepa: ListingRecord, sp_api: ListingRecord) -> ListingRecord:
    """Merge the flattened source records by field-level precedence.

    Args:
        keepa: Flattened third-party record.
        sp_api: Flattened first-party record.

    Returns:
        ListingRecord: Merged record (derived fields left unset).
    """
    merged: dict[str, Any] = {}
    for name in FIRST_PARTY_FIELDS:
        merged[name] = _prefer(getattr(sp_api, name), getattr(keepa, name))
    for name in THIRD_PARTY_FIELDS:
        merged[name] = _prefer(getattr(keepa, name), getattr(sp_api, name))
    return ListingRecord(**merged)


def derive_fields(record: ListingRecord, *, our_seller_id: str | None = None) -> ListingRecord:
    """Compute derived fields on a merged record.

    Args:
        record: Merged record.
        our_seller_id: Our marketplace seller id, if configured.

    Returns:
        ListingRecord: Copy with ``days_of_cover``, ``is_out_of_stock`` and
        ``is_buy_box_lost`` set.
    """
    stock = record.total_stock
    units_30d = record.units_30d

    days_of_cover: float | None = None
    if stock is not None and units_30d is not None and units_30d > 0:
        days_of_cover = round_money(stock / (units_30d / 30))

    is_buy_box_lost: bool | None = None
    if our_seller_id and record.buy_box_seller_id:
        is_buy_box_lost = record.buy_box_seller_id != our_seller_id

    return replace(
        record,
        days_of_cover=days_of_cover,
        is_out_of_stock=(stock <= 0) if stock is not None else None,
        is_buy_box_lost=is_buy_box_lost,
    )

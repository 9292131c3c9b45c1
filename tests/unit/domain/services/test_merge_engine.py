# tests/unit/domain/services/test_merge_engine.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Flatten, merge and derive."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from marketplace_ingest.domain.entities.listing_record import ListingRecord
from marketplace_ingest.domain.services.merge_engine import (
    KEEPA_EPOCH_OFFSET_MINUTES,
    calculate_price_stats,
    derive_fields,
    flatten_keepa,
    flatten_sp_api,
    keepa_minutes_to_datetime,
    merge_records,
    percentile,
)

AS_OF = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


def _keepa_minutes(dt: datetime) -> int:
    return int(dt.timestamp() // 60) - KEEPA_EPOCH_OFFSET_MINUTES


def _history(*points: tuple[datetime, int]) -> list[int]:
    flat: list[int] = []
    for when, price in points:
        flat.extend([_keepa_minutes(when), price])
    return flat


# --------------------------------------------------------------------------- #
# Price statistics                                                            #
# --------------------------------------------------------------------------- #


def test_keepa_minutes_round_trip_to_utc() -> None:
    assert keepa_minutes_to_datetime(_keepa_minutes(AS_OF)) == AS_OF
    assert keepa_minutes_to_datetime(0) == datetime(2011, 1, 1, tzinfo=UTC)


def test_keepa_minutes_out_of_range_is_none() -> None:
    assert keepa_minutes_to_datetime(10**15) is None


def test_price_stats_skip_unrepresentable_timestamps() -> None:
    history = [10**15, 1999, *_history((AS_OF - timedelta(days=1), 2500))]

    stats = calculate_price_stats(history, as_of=AS_OF)

    assert (stats.lowest, stats.highest) == (2500, 2500)


def test_percentile_interpolates() -> None:
    values = [1000, 2000, 3000, 4000]
    assert percentile(values, 25) == 1750
    assert percentile(values, 50) == 2500
    assert percentile(values, 75) == 3250
    assert percentile([42], 90) == 42


def test_price_stats_filter_window_and_sentinels() -> None:
    history = _history(
        (AS_OF - timedelta(days=120), 9999),
        (AS_OF - timedelta(days=40), 1000),
        (AS_OF - timedelta(days=30), -1),
        (AS_OF - timedelta(days=20), 2000),
        (AS_OF - timedelta(days=10), 3000),
        (AS_OF - timedelta(days=1), 4000),
    )

    stats = calculate_price_stats(history, as_of=AS_OF)

    assert (stats.p25, stats.median, stats.p75) == (1750, 2500, 3250)
    assert (stats.lowest, stats.highest) == (1000, 4000)
    assert stats.volatility == 0.4472


def test_price_stats_empty_history() -> None:
    stats = calculate_price_stats([], as_of=AS_OF)
    assert stats.median is None
    assert stats.volatility is None


# --------------------------------------------------------------------------- #
# Flatten                                                                     #
# --------------------------------------------------------------------------- #


def test_flatten_keepa_without_products() -> None:
    assert flatten_keepa(None, as_of=AS_OF) == ListingRecord(keepa_has_data=False)
    assert flatten_keepa({"products": []}, as_of=AS_OF).keepa_has_data is False


def test_flatten_keepa_product() -> None:
    current = [None] * 12
    current[3] = 1543
    current[11] = 7
    payload = {
        "products": [
            {
                "asin": "B000000001",
                "title": " Widget ",
                "brand": "Acme",
                "categoryTree": [{"name": "Home"}, {"name": "Kitchen"}],
                "stats": {"current": current, "buyBoxPrice": 2499},
                "buyBoxSellerIdHistory": ["100", "S0", "200", "S1"],
                "buyBoxIsFBA": True,
                "lastUpdate": int(AS_OF.timestamp()),
                "csv": [None, _history((AS_OF - timedelta(days=2), 2000))],
            }
        ]
    }

    record = flatten_keepa(payload, as_of=AS_OF)

    assert record.title == "Widget"
    assert record.category_path == "Home > Kitchen"
    assert record.buy_box_price == 24.99
    assert record.buy_box_seller_id == "S1"
    assert record.buy_box_is_fba is True
    assert record.seller_count == 7
    assert record.keepa_new_offers == 7
    assert record.keepa_sales_rank_latest == 1543
    assert record.keepa_has_data is True
    assert record.keepa_last_update == AS_OF
    assert record.keepa_price_median_90d == 2000
    assert record.price_volatility_score == 0.0


def test_flatten_keepa_tolerates_out_of_range_times() -> None:
    payload = {
        "products": [
            {
                "asin": "B000000001",
                "title": "Widget",
                "lastUpdate": 10**15,
                "csv": [None, [10**15, 1999]],
            }
        ]
    }

    record = flatten_keepa(payload, as_of=AS_OF)

    assert record.title == "Widget"
    assert record.keepa_last_update is None
    assert record.keepa_price_median_90d is None


def test_flatten_sp_api_combined_payload() -> None:
    payload = {
        "catalogItem": {
            "attributes": {"item_name": [{"value": "Widget Pro"}], "brand": [{"value": "Acme"}]}
        },
        "pricing": {
            "offers": [
                {"isMine": False, "listingPrice": {"amount": 21.0}},
                {
                    "isMine": True,
                    "listingPrice": {"amount": 24.0},
                    "regularPrice": {"amount": 29.99},
                },
            ]
        },
        "inventory": {
            "fulfillmentAvailability": [
                {"fulfillmentChannelCode": "AMAZON_EU", "quantity": 5},
                {"fulfillmentChannelCode": "AMAZON_EU", "quantity": "3"},
            ]
        },
        "sales": {"unitsOrdered7d": 0, "unitsOrdered30d": 30},
    }

    record = flatten_sp_api(payload)

    assert record.title == "Widget Pro"
    assert record.brand == "Acme"
    assert record.price_inc_vat == 24.0
    assert record.price_ex_vat == 20.0
    assert record.list_price == 29.99
    assert record.total_stock == 8
    assert record.fulfillment_channel == "AMAZON_EU"
    assert record.units_7d == 0
    assert record.units_30d == 30
    assert record.units_90d is None


def test_flatten_sp_api_empty_inventory_defaults_to_fbm() -> None:
    record = flatten_sp_api(
        {"catalogItem": {"title": "X"}, "inventory": {"fulfillmentAvailability": []}}
    )
    assert record.total_stock == 0
    assert record.fulfillment_channel == "FBM"


def test_flatten_sp_api_accepts_bare_catalog_item() -> None:
    record = flatten_sp_api({"summaries": [{"itemName": "Bare", "brand": "B"}]})
    assert (record.title, record.brand) == ("Bare", "B")
    assert flatten_sp_api(None) == ListingRecord()


# --------------------------------------------------------------------------- #
# Merge & derive                                                              #
# --------------------------------------------------------------------------- #


def test_merge_precedence_by_field_group() -> None:
    keepa = ListingRecord(title="Keepa title", buy_box_price=19.99, total_stock=50, seller_count=4)
    sp_api = ListingRecord(title="Our title", buy_box_price=18.0, total_stock=None, seller_count=2)

    merged = merge_records(keepa, sp_api)

    assert merged.title == "Our title"
    assert merged.buy_box_price == 19.99
    assert merged.seller_count == 4
    assert merged.total_stock == 50


def test_merge_keeps_falsy_values_from_preferred_source() -> None:
    merged = merge_records(
        ListingRecord(total_stock=40, seller_count=0), ListingRecord(total_stock=0, seller_count=3)
    )
    assert merged.total_stock == 0
    assert merged.seller_count == 0


def test_days_of_cover() -> None:
    assert derive_fields(ListingRecord(total_stock=300, units_30d=90)).days_of_cover == 100
    assert derive_fields(ListingRecord(total_stock=300, units_30d=0)).days_of_cover is None
    assert derive_fields(ListingRecord(total_stock=None, units_30d=10)).days_of_cover is None


def test_stock_and_buy_box_flags() -> None:
    record = ListingRecord(total_stock=0, buy_box_seller_id="OTHER")

    derived = derive_fields(record, our_seller_id="ME")

    assert derived.is_out_of_stock is True
    assert derived.is_buy_box_lost is True
    assert derive_fields(record).is_buy_box_lost is None
    assert derive_fields(ListingRecord()).is_out_of_stock is None
    assert derive_fields(record, our_seller_id="OTHER").is_buy_box_lost is False

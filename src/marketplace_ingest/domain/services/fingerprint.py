# src/marketplace_ingest/domain/services/fingerprint.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Deterministic content fingerprints for listing records.

Purpose:
    Detect "nothing materially changed" between runs by hashing a fixed,
    canonical subset of an item's fields.

Layer:
    domain/services

Design:
    * The canonical input always carries every key; missing values are an
      explicit ``None`` so omission and null hash identically.
    * Money is converted to integer minor units before hashing so that float
      representation error never changes the digest.
    * Serialization sorts keys and uses compact separators.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from marketplace_ingest.domain.enums.ingestion import marketplace_code
from marketplace_ingest.domain.exceptions.ingestion import FingerprintInputError
from marketplace_ingest.domain.services.coercion import to_integer, to_number, to_text

__all__ = [
    "CANONICAL_FIELDS",
    "build_canonical_input",
    "to_pence",
    "serialize_canonical",
    "hash_canonical",
    "generate_fingerprint",
    "verify_fingerprint",
    "has_changed",
]

CANONICAL_FIELDS: tuple[str, ...] = (
    "asin",
    "marketplace",
    "price_inc_vat_pence",
    "total_stock",
    "buy_box_seller_id",
    "keepa_price_p25_90d_pence",
    "seller_count",
)


def to_pence(value: Any) -> int | None:
    """Convert a major-unit amount to integer minor units.

    Rounds half away from zero on the decimal rendering of the value, so
    ``0.1 + 0.2`` and ``0.3`` produce the same result.
    """
    number = to_number(value)
    if number is None:
        return None
    try:
        pence = (Decimal(str(number)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    return int(pence)


def build_canonical_input(record: Mapping[str, Any]) -> dict[str, Any]:
    """Project a record onto the canonical fingerprint fields.

    Args:
        record: Mapping holding at least ``asin`` and ``marketplace_id`` plus
            any of the listing fields.

    Returns:
        dict[str, Any]: Canonical input with every key present.

    Raises:
        FingerprintInputError: If ``asin`` or ``marketplace_id`` is missing.
    """
    asin = to_text(record.get("asin"))
    marketplace_id = to_integer(record.get("marketplace_id"))
    if asin is None or marketplace_id is None:
        raise FingerprintInputError(
            "asin and marketplace_id are required to fingerprint a record.",
            details={"asin": record.get("asin"), "marketplace_id": record.get("marketplace_id")},
        )

    return {
        "asin": asin,
        "marketplace": marketplace_code(marketplace_id),
        "price_inc_vat_pence": to_pence(record.get("price_inc_vat")),
        "total_stock": to_integer(record.get("total_stock")),
        "buy_box_seller_id": to_text(record.get("buy_box_seller_id")),
        "keepa_price_p25_90d_pence": to_integer(record.get("keepa_price_p25_90d")),
        "seller_count": to_integer(record.get("seller_count")),
    }


def serialize_canonical(canonical: Mapping[str, Any]) -> bytes:
    """Serialize canonical input to UTF-8 JSON with sorted keys."""
    return json.dumps(
        dict(canonical), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def hash_canonical(data: bytes) -> str:
    """Return the 64-character SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def generate_fingerprint(record: Mapping[str, Any]) -> str:
    """Return the fingerprint of a record."""
    return hash_canonical(serialize_canonical(build_canonical_input(record)))


def verify_fingerprint(record: Mapping[str, Any], digest: str) -> bool:
    """Return True if ``digest`` is the fingerprint of ``record``."""
    return generate_fingerprint(record) == digest


def has_changed(previous: str | None, current: str) -> bool:
    """Return True when ``current`` differs from ``previous`` (None counts as changed)."""
    return previous is None or previous != current

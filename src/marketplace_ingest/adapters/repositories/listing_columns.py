# src/marketplace_ingest/adapters/repositories/listing_columns.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Mapping between ``ListingRecord`` and the shared listing columns.

Snapshot and current-state tables carry the same listing columns, named
after the record fields. Money columns are ``NUMERIC``: floats are written
through ``Decimal(str(v))`` and read back as floats.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from marketplace_ingest.domain.entities.listing_record import RECORD_FIELDS, ListingRecord


def record_to_columns(record: ListingRecord) -> dict[str, Any]:
    """Return column values for a record."""
    out: dict[str, Any] = {}
    for key, value in record.as_dict().items():
        if isinstance(value, float):
            out[key] = Decimal(str(value))
        else:
            out[key] = value
    return out


def record_from_row(row: Any) -> ListingRecord:
    """Rebuild a record from an ORM row carrying the listing columns."""
    values: dict[str, Any] = {}
    for name in RECORD_FIELDS:
        value = getattr(row, name, None)
        values[name] = float(value) if isinstance(value, Decimal) else value
    return ListingRecord(**values)

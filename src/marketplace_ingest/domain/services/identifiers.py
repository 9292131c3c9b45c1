# src/marketplace_ingest/domain/services/identifiers.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Marketplace item identifier normalization."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

__all__ = ["ASIN_PATTERN", "DEFAULT_MAX_ITEMS", "NormalizedIdentifiers", "normalize_asins"]

ASIN_PATTERN = re.compile(r"^[A-Z0-9]{10}$")
DEFAULT_MAX_ITEMS = 20


@dataclass(frozen=True, slots=True)
class NormalizedIdentifiers:
    """Outcome of identifier normalization.

    Attributes:
        valid: Upper-cased, de-duplicated identifiers in input order.
        skipped: Raw tokens rejected as malformed.
        truncated: Valid identifiers dropped by the size cap.
    """

    valid: tuple[str, ...]
    skipped: tuple[str, ...] = ()
    truncated: tuple[str, ...] = ()


def normalize_asins(
    values: str | Iterable[str], *, max_items: int = DEFAULT_MAX_ITEMS
) -> NormalizedIdentifiers:
    """Split, trim, upper-case, validate and de-duplicate identifiers.

    Args:
        values: A comma-separated string, or an iterable of strings that may
            themselves contain commas.
        max_items: Maximum number of identifiers to keep.

    Returns:
        NormalizedIdentifiers: Valid identifiers plus the rejected tokens.
    """
    raw = [values] if isinstance(values, str) else list(values)

    valid: list[str] = []
    skipped: list[str] = []
    seen: set[str] = set()
    for chunk in raw:
        for token in str(chunk).split(","):
            candidate = token.strip().upper()
            if not candidate:
                continue
            if not ASIN_PATTERN.match(candidate):
                skipped.append(token.strip())
                continue
            if candidate in seen:
                continue
            seen.add(candidate)
            valid.append(candidate)

    return NormalizedIdentifiers(
        valid=tuple(valid[:max_items]),
        skipped=tuple(skipped),
        truncated=tuple(valid[max_items:]),
    )

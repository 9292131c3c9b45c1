# src/marketplace_ingest/domain/services/coercion.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Nullable coercion of loosely-typed external values.

Purpose:
    Convert values taken from provider JSON into nullable primitives without
    collapsing legitimate falsy values (``0``, ``False``) to ``None``.

Layer:
    domain/services

Notes:
    - ``None`` in always yields ``None`` out.
    - Anything that cannot be interpreted yields ``None``; these helpers never
      raise for bad input.
    - Numbers passed to :func:`to_datetime` are epoch milliseconds.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

__all__ = [
    "to_nullish",
    "to_number",
    "to_integer",
    "to_boolean",
    "to_text",
    "to_datetime",
    "round_money",
]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_TRUE_STRINGS = frozenset({"true", "1"})
_FALSE_STRINGS = frozenset({"false", "0"})


def to_nullish(value: Any) -> Any:
    """Return ``value`` unchanged (``None`` stays ``None``)."""
    return value


def to_number(value: Any) -> float | int | None:
    """Coerce a value to a finite number.

    Args:
        value: Raw value (number, numeric string, anything else).

    Returns:
        The number, or None when the value is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def to_integer(value: Any) -> int | None:
    """Coerce a value to an integer.

    Finite numbers are rounded half away from zero. Strings are parsed as a
    leading base-10 integer, so ``"42abc"`` yields 42.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    number = to_number(value)
    if number is None:
        return None
    return int(Decimal(str(number)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_boolean(value: Any) -> bool | None:
    """Coerce a value to a boolean.

    Accepts real booleans, the integers 0 and 1, and the strings
    ``true``/``false``/``1``/``0`` (case-insensitive, trimmed).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def to_text(value: Any) -> str | None:
    """Coerce a value to trimmed text; empty strings become None."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return None


def to_datetime(value: Any) -> datetime | None:
    """Coerce a value to a timezone-aware datetime.

    Args:
        value: Aware or naive datetime (naive is assumed UTC), ISO-8601
            string, or epoch milliseconds.

    Returns:
        An aware datetime, or None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    number = to_number(value)
    if number is None:
        return None
    try:
        return datetime.fromtimestamp(number / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def round_money(value: float | int | None) -> float | None:
    """Round a major-unit amount to 2 dp, half away from zero."""
    if value is None:
        return None
    try:
        quantized = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    return float(quantized)

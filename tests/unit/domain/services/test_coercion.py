# tests/unit/domain/services/test_coercion.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Nullable coercion helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from marketplace_ingest.domain.services.coercion import (
    round_money,
    to_boolean,
    to_datetime,
    to_integer,
    to_number,
    to_text,
)


def test_falsy_values_survive_coercion() -> None:
    assert to_number(0) == 0
    assert to_integer(0) == 0
    assert to_boolean(False) is False
    assert to_boolean(0) is False
    assert to_text(0) == "0"


def test_none_in_none_out() -> None:
    for fn in (to_number, to_integer, to_boolean, to_text, to_datetime, round_money):
        assert fn(None) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("12.5", 12.5), (" 7 ", 7.0), ("abc", None), ("", None), (float("nan"), None), (True, None)],
)
def test_to_number(raw: object, expected: float | None) -> None:
    assert to_number(raw) == expected


def test_to_number_accepts_decimal() -> None:
    assert to_number(Decimal("3.25")) == 3.25


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(2.5, 3), (-2.5, -3), (2.4, 2), ("42abc", 42), ("x1", None), (False, None)],
)
def test_to_integer_rounds_half_away_from_zero(raw: object, expected: int | None) -> None:
    assert to_integer(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("TRUE", True),
        (" false ", False),
        ("1", True),
        ("0", False),
        (1, True),
        (2, None),
        ("yes", None),
    ],
)
def test_to_boolean(raw: object, expected: bool | None) -> None:
    assert to_boolean(raw) is expected


def test_to_text_trims_and_drops_empty() -> None:
    assert to_text("  Widget  ") == "Widget"
    assert to_text("   ") is None
    assert to_text(["a"]) is None


def test_to_datetime_variants() -> None:
    expected = datetime(2025, 1, 1, tzinfo=UTC)
    assert to_datetime("2025-01-01T00:00:00Z") == expected
    assert to_datetime("2025-01-01T00:00:00") == expected
    assert to_datetime(datetime(2025, 1, 1)) == expected
    assert to_datetime(1_735_689_600_000) == expected
    assert to_datetime("not a date") is None


def test_round_money_half_up() -> None:
    assert round_money(2.675) == 2.68
    assert round_money(0.1 + 0.2) == 0.3
    assert round_money(-1.005) == -1.01

# src/marketplace_ingest/domain/enums/ingestion.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Ingestion enumerations: payload sources, run types and run states."""

from __future__ import annotations

from enum import Enum


class PayloadSource(str, Enum):
    """External source a raw payload came from."""

    KEEPA = "keepa"
    SP_API = "sp_api"


class IngestionRunType(str, Enum):
    """Kind of ingestion run."""

    FULL_REFRESH = "FULL_REFRESH"
    SINGLE_ITEM = "SINGLE_ITEM"


class IngestionRunStatus(str, Enum):
    """Outcome of an ingestion run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


MARKETPLACE_CODES: dict[int, str] = {
    1: "UK",
    2: "DE",
    3: "FR",
    4: "IT",
    5: "ES",
    6: "US",
}


def marketplace_code(marketplace_id: int) -> str:
    """Return the short code for an internal marketplace id."""
    return MARKETPLACE_CODES.get(marketplace_id, f"MARKETPLACE_{marketplace_id}")

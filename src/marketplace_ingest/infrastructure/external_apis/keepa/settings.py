# src/marketplace_ingest/infrastructure/external_apis/keepa/settings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Pydantic settings for the Keepa transport client."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class KeepaSettings(BaseSettings):
    """Configuration for the Keepa product API client.

    Environment variables (with ``model_config.env_prefix``):

    * ``KEEPA_API_KEY`` (unset means Keepa is skipped)
    * ``KEEPA_BASE_URL``
    * ``KEEPA_DOMAIN_ID`` (2 = amazon.co.uk)
    * ``KEEPA_BATCH_SIZE``
    * ``KEEPA_STATS_DAYS``
    * ``KEEPA_TIMEOUT_S``
    * ``KEEPA_MAX_RETRIES``
    """

    api_key: SecretStr | None = Field(
        None,
        description="Keepa API key.",
    )
    base_url: str = Field(
        "https://api.keepa.com",
        description="Base URL for the Keepa API.",
    )
    domain_id: int = Field(
        2,
        ge=1,
        description="Keepa marketplace domain id.",
    )
    batch_size: int = Field(
        10,
        ge=1,
        le=100,
        description="ASINs per product request.",
    )
    stats_days: int = Field(
        90,
        ge=1,
        description="Statistics window requested from Keepa, in days.",
    )
    offers: int = Field(
        20,
        ge=0,
        le=100,
        description="Number of marketplace offers requested per product.",
    )
    timeout_s: float = Field(
        30.0,
        description="Per-request timeout in seconds.",
    )
    max_retries: int = Field(
        2,
        ge=0,
        description="Retry attempts for transient transport failures.",
    )

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_prefix="KEEPA_",
        extra="ignore",
    )

    @property
    def configured(self) -> bool:
        """Return True when an API key is present."""
        return self.api_key is not None and bool(self.api_key.get_secret_value().strip())

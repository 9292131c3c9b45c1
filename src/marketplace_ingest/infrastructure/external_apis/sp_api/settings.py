# src/marketplace_ingest/infrastructure/external_apis/sp_api/settings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Pydantic settings for the Selling Partner API client."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SpApiSettings(BaseSettings):
    """Configuration for the SP-API catalog and pricing client.

    Environment variables (with ``model_config.env_prefix``):

    * ``SP_API_ACCESS_TOKEN`` (unset means SP-API is skipped)
    * ``SP_API_BASE_URL``
    * ``SP_API_MARKETPLACE_ID`` (Amazon marketplace id, e.g. UK)
    * ``SP_API_TIMEOUT_S``
    * ``SP_API_MAX_RETRIES``

    Token refresh (LWA) is handled outside this process; the client sends the
    access token it is given.
    """

    access_token: SecretStr | None = Field(
        None,
        description="Login-with-Amazon access token.",
    )
    base_url: str = Field(
        "https://sellingpartnerapi-eu.amazon.com",
        description="Regional SP-API endpoint.",
    )
    marketplace_id: str = Field(
        "A1F83G8C2ARO7P",
        description="Amazon marketplace id queried by the client.",
    )
    timeout_s: float = Field(
        15.0,
        description="Per-request timeout in seconds.",
    )
    max_retries: int = Field(
        2,
        ge=0,
        description="Retry attempts for transient transport failures.",
    )

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_prefix="SP_API_",
        extra="ignore",
    )

    @property
    def configured(self) -> bool:
        """Return True when an access token is present."""
        return self.access_token is not None and bool(
            self.access_token.get_secret_value().strip()
        )

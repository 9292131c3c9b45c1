# src/marketplace_ingest/domain/exceptions/ingestion.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Ingestion and External Source Exceptions.

Synopsis:
    Domain-level exceptions raised while fetching from external marketplace
    data sources and while transforming their payloads.

Design:
    * Inherit from :class:`DomainError` for consistent ``.code``.
    * Source errors carry enough context (status, retry hints) for the
      gateways to consult the rate limiter without re-parsing HTTP.
    * Data-quality problems are never exceptions; they become DQ issues.

Layer:
    domain/exceptions
"""

from __future__ import annotations

from typing import Any

from marketplace_ingest.domain.exceptions.base import DomainError


class IngestionError(DomainError):
    """Base class for transform/pipeline failures."""

    code = "INGESTION_ERROR"


class FingerprintInputError(IngestionError):
    """Record lacks the identity fields required to compute a fingerprint."""

    code = "FINGERPRINT_INPUT_INVALID"


class RecordSchemaError(IngestionError):
    """Record contains fields outside the canonical listing schema."""

    code = "RECORD_SCHEMA_INVALID"


class ExternalSourceError(DomainError):
    """Base class for external data-source failures.

    Attributes:
        source: Source identifier (``keepa`` or ``sp_api``).
    """

    code = "EXTERNAL_SOURCE_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable message.
            source: Source identifier, if known.
            details: Optional diagnostic payload.
        """
        super().__init__(message, details=details)
        self.source = source


class SourceUnavailable(ExternalSourceError):
    """Network error, timeout or upstream 5xx."""

    code = "SOURCE_UNAVAILABLE"


class SourceBadRequest(ExternalSourceError):
    """Upstream rejected the request (4xx other than 429)."""

    code = "SOURCE_BAD_REQUEST"


class SourceValidationError(ExternalSourceError):
    """Upstream returned a payload that is not the expected JSON shape."""

    code = "SOURCE_SCHEMA_ERROR"


class SourceRateLimited(ExternalSourceError):
    """Upstream answered 429.

    Attributes:
        retry_after_s: Provider-issued ``Retry-After`` in seconds, if any.
        tokens_remaining: Provider-reported remaining tokens, if any.
    """

    code = "SOURCE_RATE_LIMITED"

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        retry_after_s: float | None = None,
        tokens_remaining: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error with provider retry hints."""
        super().__init__(message, source=source, details=details)
        self.retry_after_s = retry_after_s
        self.tokens_remaining = tokens_remaining

# src/marketplace_ingest/infrastructure/external_apis/http_support.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Shared HTTP helpers for the source transport clients.

Both clients map provider responses onto the same domain error family, read
the same throttle headers, and share the default request headers.
"""

from __future__ import annotations

from contextlib import suppress
from typing import Any, Final

import httpx

from marketplace_ingest.domain.exceptions.ingestion import (
    SourceBadRequest,
    SourceRateLimited,
    SourceUnavailable,
    SourceValidationError,
)

DEFAULT_HEADERS: Final[dict[str, str]] = {
    "Accept": "application/json",
    "User-Agent": "marketplace-ingest/1.0",
}

REMAINING_TOKENS_HEADER: Final[str] = "X-Rl-RemainingTokens"


def parse_retry_after(val: str | None) -> float | None:
    """Parse the HTTP ``Retry-After`` header (seconds form only).

    Args:
        val: Header value as a string, or ``None``.

    Returns:
        The seconds to wait as a float if parseable, otherwise ``None``.
    """
    if not val:
        return None
    try:
        return max(0.0, float(val))
    except ValueError:
        return None


def parse_int_header(val: str | None) -> int | None:
    """Parse an integer header such as ``X-Rl-RemainingTokens``."""
    if val is None:
        return None
    try:
        return int(val.strip())
    except ValueError:
        return None


def raise_for_status(source: str, response: httpx.Response) -> None:
    """Raise the domain error matching a non-2xx response.

    Raises:
        SourceRateLimited: 429, carrying ``Retry-After`` and remaining tokens.
        SourceUnavailable: 5xx.
        SourceBadRequest: Any other 4xx.
    """
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise SourceRateLimited(
            "rate_limited",
            source=source,
            retry_after_s=parse_retry_after(response.headers.get("Retry-After")),
            tokens_remaining=parse_int_header(response.headers.get(REMAINING_TOKENS_HEADER)),
            details={"status": status},
        )
    if status >= 500:
        raise SourceUnavailable("upstream_error", source=source, details={"status": status})

    details: dict[str, Any] = {"status": status}
    with suppress(ValueError):
        body = response.json()
        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                details.update({"code": errors[0].get("code"), "message": errors[0].get("message")})
            elif "error" in body:
                details["error"] = body.get("error")
    raise SourceBadRequest("bad_request", source=source, details=details)


def parse_json_object(source: str, response: httpx.Response) -> dict[str, Any]:
    """Return the response body as a JSON object.

    Raises:
        SourceValidationError: If the body is not JSON or not an object.
    """
    try:
        payload = response.json()
    except ValueError as exc:
        raise SourceValidationError("non_json", source=source, details={"error": str(exc)}) from exc
    if not isinstance(payload, dict):
        raise SourceValidationError(
            "bad_shape", source=source, details={"expected": "object"}
        )
    return payload


def is_transient(exc: BaseException) -> bool:
    """Return True for failures worth retrying within one call."""
    return isinstance(exc, (SourceUnavailable, httpx.TransportError))

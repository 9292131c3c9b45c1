# src/marketplace_ingest/infrastructure/observability/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus metrics utilities (registry-aware, hot-reload safe).

Every collector is obtained through an accessor that binds it to the
**current** ``prometheus_client.REGISTRY`` exactly once:

    * Safe under tests that swap the default registry.
    * No duplicate-registration errors.
    * Cache automatically resets when the active registry changes.

Metric families:
    * Database: ``db_operation_duration_seconds``, ``db_errors_total``.
    * Worker: ``ingest_tasks_total``, ``ingest_task_duration_seconds``.
    * Sources: ``ingest_source_requests_total``,
      ``ingest_source_latency_seconds``, ``ingest_rate_limit_waits_total``.
    * Data quality: ``ingest_dq_issues_total``.

Example:
    with observe_source_request(source="keepa", endpoint="product") as obs:
        ...
        obs.mark_error("rate_limited")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from time import perf_counter
from typing import Final

import prometheus_client as prom
from prometheus_client import Counter, Histogram

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Common histogram buckets (seconds)
_BUCKETS: Final[tuple[float, ...]] = (
    0.005,
    0.010,
    0.025,
    0.050,
    0.100,
    0.250,
    0.500,
    1.000,
    2.500,
    5.000,
    10.000,
)

_TASK_BUCKETS: Final[tuple[float, ...]] = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)

# Cache keyed by metric name within the currently-active registry.
_registry_id: int | None = None
_hist_cache: dict[str, Histogram] = {}
_counter_cache: dict[str, Counter] = {}
_lock = threading.RLock()


# ---------------------------------------------------------------------------
# Registry-handling primitives


def _ensure_registry() -> None:
    """Reset caches if the active registry changed."""
    global _registry_id
    with _lock:
        rid = id(prom.REGISTRY)
        if _registry_id is None or _registry_id != rid:
            _hist_cache.clear()
            _counter_cache.clear()
            _registry_id = rid


def _lookup_existing(name: str, kind: type) -> object | None:
    """Return a previously-registered collector of ``kind`` from the active registry."""
    with _lock, suppress(Exception):
        mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
        if isinstance(mapping, dict):
            col = mapping.get(name)
            if isinstance(col, kind):
                return col
    return None


# ---------------------------------------------------------------------------
# Get-or-create helpers


def _get_or_create_hist(
    name: str,
    help_text: str,
    *,
    buckets: tuple[float, ...] = _BUCKETS,
    labelnames: tuple[str, ...] = (),
) -> Histogram:
    """Get or create a registry-bound ``Histogram`` with stable identity.

    Args:
        name: Metric name (snake_case).
        help_text: Human-readable description.
        buckets: Histogram buckets in seconds.
        labelnames: Optional label names tuple.

    Returns:
        Histogram: Bound to ``prom.REGISTRY``.
    """
    _ensure_registry()
    with _lock:
        cached = _hist_cache.get(name)
        if isinstance(cached, Histogram):
            return cached

        existing = _lookup_existing(name, Histogram)
        if isinstance(existing, Histogram):
            _hist_cache[name] = existing
            return existing

        try:
            h = Histogram(name, help_text, labelnames, buckets=buckets, registry=prom.REGISTRY)
            _hist_cache[name] = h
            return h
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Histogram)
                if isinstance(again, Histogram):
                    _hist_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus histogram %s", name)
            raise


def _get_or_create_counter(
    name: str,
    help_text: str,
    *,
    labelnames: tuple[str, ...] = (),
) -> Counter:
    """Get or create a registry-bound ``Counter`` with stable identity.

    Args:
        name: Metric name (snake_case, without the ``_total`` suffix).
        help_text: Human-readable description.
        labelnames: Optional label names tuple.

    Returns:
        Counter: Bound to ``prom.REGISTRY``.
    """
    _ensure_registry()
    with _lock:
        cached = _counter_cache.get(name)
        if isinstance(cached, Counter):
            return cached

        existing = _lookup_existing(name, Counter)
        if isinstance(existing, Counter):
            _counter_cache[name] = existing
            return existing

        try:
            c = Counter(name, help_text, labelnames, registry=prom.REGISTRY)
            _counter_cache[name] = c
            return c
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Counter)
                if isinstance(again, Counter):
                    _counter_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus counter %s", name)
            raise


# ---------------------------------------------------------------------------
# Database


def get_db_operation_duration_seconds() -> Histogram:
    """Return histogram for repository operation latency.

    Labels:
        operation: Repository operation (e.g. ``task_claim``).
        table: Table name.
    """
    return _get_or_create_hist(
        "db_operation_duration_seconds",
        "Latency of repository operations (seconds).",
        labelnames=("operation", "table"),
    )


def get_db_errors_total() -> Counter:
    """Return counter for repository errors.

    Labels:
        operation: Repository operation.
        table: Table name.
        reason: Exception class name.
    """
    return _get_or_create_counter(
        "db_errors",
        "Errors raised by repository operations.",
        labelnames=("operation", "table", "reason"),
    )


# ---------------------------------------------------------------------------
# Worker


def get_ingest_tasks_total() -> Counter:
    """Return counter for executed tasks.

    Labels:
        task_type: Task type string.
        outcome: ``succeeded|retried|failed|unknown_type``.
    """
    return _get_or_create_counter(
        "ingest_tasks",
        "Tasks executed by the worker, by outcome.",
        labelnames=("task_type", "outcome"),
    )


def get_ingest_task_duration_seconds() -> Histogram:
    """Return histogram for task handler duration (labels: ``task_type``)."""
    return _get_or_create_hist(
        "ingest_task_duration_seconds",
        "Task handler duration (seconds).",
        buckets=_TASK_BUCKETS,
        labelnames=("task_type",),
    )


# ---------------------------------------------------------------------------
# External sources


def get_source_requests_total() -> Counter:
    """Return counter for upstream requests.

    Labels:
        source: ``keepa`` or ``sp_api``.
        endpoint: Logical endpoint name.
        outcome: ``success`` or ``error``.
        reason: Error reason, ``none`` on success.
    """
    return _get_or_create_counter(
        "ingest_source_requests",
        "Requests issued to external data sources.",
        labelnames=("source", "endpoint", "outcome", "reason"),
    )


def get_source_latency_seconds() -> Histogram:
    """Return histogram for upstream request latency (labels: ``source``, ``endpoint``)."""
    return _get_or_create_hist(
        "ingest_source_latency_seconds",
        "Latency of external data source requests (seconds).",
        labelnames=("source", "endpoint"),
    )


def get_rate_limit_waits_total() -> Counter:
    """Return counter for rate-limit waits.

    Labels:
        source: Source whose bucket forced the wait.
        reason: ``tokens`` (bucket empty) or ``throttled`` (provider 429).
    """
    return _get_or_create_counter(
        "ingest_rate_limit_waits",
        "Waits imposed by source rate limiters.",
        labelnames=("source", "reason"),
    )


# ---------------------------------------------------------------------------
# Data quality


def get_dq_issues_total() -> Counter:
    """Return counter for detected DQ issues (labels: ``issue_type``, ``severity``)."""
    return _get_or_create_counter(
        "ingest_dq_issues",
        "Data-quality issues detected during transforms.",
        labelnames=("issue_type", "severity"),
    )


# ---------------------------------------------------------------------------
# Observation context manager used by source clients


@dataclass
class SourceObservation:
    """State captured while observing an upstream call.

    Attributes:
        source: Upstream source identifier.
        endpoint: Logical endpoint name.
        start: Monotonic start time in seconds.
        outcome: ``success`` or ``error``.
        error_reason: Short machine-readable reason, if any.
    """

    source: str
    endpoint: str
    start: float = field(default_factory=perf_counter)
    outcome: str = "success"
    error_reason: str | None = None

    def mark_error(self, reason: str) -> None:
        """Mark the call as failed with a given reason."""
        self.outcome = "error"
        self.error_reason = reason


@contextmanager
def observe_source_request(
    *, source: str, endpoint: str
) -> Generator[SourceObservation, None, None]:
    """Observe an upstream request, recording latency and outcome.

    Args:
        source: Upstream source identifier (``keepa`` or ``sp_api``).
        endpoint: Logical endpoint name.

    Yields:
        A mutable :class:`SourceObservation` callers use to signal errors.
    """
    obs = SourceObservation(source=source, endpoint=endpoint)
    try:
        yield obs
    except Exception:
        if obs.error_reason is None:
            obs.mark_error("exception")
        raise
    finally:
        elapsed = perf_counter() - obs.start
        with suppress(Exception):
            get_source_latency_seconds().labels(source=obs.source, endpoint=obs.endpoint).observe(
                elapsed
            )
            get_source_requests_total().labels(
                source=obs.source,
                endpoint=obs.endpoint,
                outcome=obs.outcome,
                reason=obs.error_reason or "none",
            ).inc()

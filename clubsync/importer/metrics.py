"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_wildapricot_enabled_gauge = Gauge(
    "importer_wildapricot_adapter_enabled_total",
    "Whether the Wild Apricot importer adapter is enabled (1) or disabled (0).",
)
_wildapricot_auth_attempts = Counter(
    "importer_wildapricot_auth_attempts_total",
    "Wild Apricot token requests by outcome.",
    ["outcome"],
)
_wildapricot_http_retries = Counter(
    "importer_wildapricot_http_retries_total",
    "Wild Apricot API requests retried, by reason.",
    ["reason"],
)
_wildapricot_sync_rows = Counter(
    "importer_wildapricot_sync_rows_total",
    "Records reconciled by the Wild Apricot sync, by entity and action.",
    ["entity", "action"],
)
_wildapricot_sync_runs = Counter(
    "importer_wildapricot_sync_runs_total",
    "Wild Apricot sync runs by mode and outcome.",
    ["mode", "status"],
)
_wildapricot_sync_duration = Histogram(
    "importer_wildapricot_sync_duration_seconds",
    "Duration of Wild Apricot sync runs in seconds.",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)


def record_wildapricot_adapter_status(enabled: bool) -> None:
    """Set the Wild Apricot adapter enabled gauge."""

    _wildapricot_enabled_gauge.set(1 if enabled else 0)


def record_wildapricot_auth_attempt(outcome: Literal["success", "failure"]) -> None:
    """Increment the token request counter."""

    _wildapricot_auth_attempts.labels(outcome=outcome).inc()


def record_wildapricot_retry(reason: Literal["rate_limit", "server_error", "network", "unauthorized"]) -> None:
    _wildapricot_http_retries.labels(reason=reason).inc()


def record_wildapricot_rows(*, entity: str, action: str, count: int) -> None:
    """Add reconciled row counts for one entity/action pair."""

    if count <= 0:
        return
    _wildapricot_sync_rows.labels(entity=entity, action=action).inc(count)


def record_wildapricot_sync_run(
    *,
    mode: str,
    status: Literal["success", "partial", "failure"],
    duration_seconds: float,
) -> None:
    """Capture outcome and duration for a completed (or aborted) sync run."""

    _wildapricot_sync_runs.labels(mode=mode, status=status).inc()
    _wildapricot_sync_duration.observe(duration_seconds)

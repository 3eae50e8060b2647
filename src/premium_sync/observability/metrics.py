"""Prometheus metrics endpoint.

Exposes listener metrics for monitoring. Accounts left STANDARD despite an
on-chain event show up here as failed outcomes or decode errors.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Info,
    start_http_server,
)

from premium_sync import __version__

SYSTEM_INFO = Info("premium_sync", "Premium sync listener information")

# ---------------------------------------------------------------------------
# Reconciliation metrics
# ---------------------------------------------------------------------------

EVENTS_TOTAL = Counter(
    "premium_sync_events_total",
    "Decoded events by reconciliation outcome",
    ["outcome"],
)

DECODE_ERRORS_TOTAL = Counter(
    "premium_sync_decode_errors_total",
    "Streamed logs dropped because they could not be decoded",
)

# ---------------------------------------------------------------------------
# Transport metrics
# ---------------------------------------------------------------------------

TRANSPORT_ERRORS_TOTAL = Counter(
    "premium_sync_transport_errors_total",
    "Streaming connection errors",
)

RECONNECTS_TOTAL = Counter(
    "premium_sync_reconnects_total",
    "Reconnect attempts made by the subscription channel",
)

LISTENER_RUNNING = Gauge(
    "premium_sync_listener_running",
    "1 while the listener holds an open subscription",
)


def start_metrics_server(port: int = 9102) -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({"version": __version__})
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_outcome(outcome: str) -> None:
    EVENTS_TOTAL.labels(outcome=outcome).inc()


def record_decode_error() -> None:
    DECODE_ERRORS_TOTAL.inc()


def record_transport_error() -> None:
    TRANSPORT_ERRORS_TOTAL.inc()


def record_reconnect() -> None:
    RECONNECTS_TOTAL.inc()


def update_listener_running(running: bool) -> None:
    LISTENER_RUNNING.set(1 if running else 0)

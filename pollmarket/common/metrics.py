"""Prometheus metrics definitions for the prediction market engine.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from pollmarket.common.metrics import HTTP_REQUESTS_TOTAL, POLLS_RESOLVED_TOTAL

The /metrics endpoint is mounted in pollmarket/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ─── App Info ───

APP_INFO = Info("app", "Application metadata")

# ─── HTTP Metrics ───

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path_template", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["method", "path_template"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    labelnames=["method"],
)

# ─── Business Metrics: Predictions ───

PREDICTIONS_SUBMITTED_TOTAL = Counter(
    "predictions_submitted_total",
    "Prediction submissions by outcome",
    labelnames=["outcome"],
)

PREDICTION_POINTS_STAKED_TOTAL = Counter(
    "prediction_points_staked_total",
    "Points committed by accepted prediction submissions",
)

# ─── Business Metrics: Odds ───

ODDS_COMPUTE_DURATION_SECONDS = Histogram(
    "odds_compute_duration_seconds",
    "Time to derive market odds for one poll",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

ODDS_CACHE_LOOKUPS_TOTAL = Counter(
    "odds_cache_lookups_total",
    "Odds lookups served from cache vs recomputed",
    labelnames=["result"],
)

# ─── Business Metrics: Resolution ───

POLLS_RESOLVED_TOTAL = Counter(
    "polls_resolved_total",
    "Poll resolution attempts by outcome",
    labelnames=["outcome"],
)

PAYOUT_POINTS_TOTAL = Counter(
    "payout_points_total",
    "Points paid out to winning predictions",
)

# ─── WebSocket Metrics ───

WS_CONNECTIONS_ACTIVE = Gauge(
    "ws_connections_active",
    "Active WebSocket connections",
)

WS_MESSAGES_SENT_TOTAL = Counter(
    "ws_messages_sent_total",
    "WebSocket messages sent to clients",
    labelnames=["event_type"],
)

WS_EVENTS_RECEIVED_TOTAL = Counter(
    "ws_events_received_total",
    "Events received from Redis pub/sub",
    labelnames=["event_type"],
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})

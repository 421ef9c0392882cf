"""Prometheus metrics for the payments API.

Tracks HTTP traffic, PayPal call latency and outcome, and transaction status
transitions.
"""

import os

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Multiprocess mode when served by several uvicorn/gunicorn workers
if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "partyrent_payments_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Payment Gateway Metrics
# ============================================
GATEWAY_REQUESTS_TOTAL = Counter(
    "gateway_requests_total",
    "Total requests sent to the payment gateway",
    ["operation", "outcome"],
    registry=REGISTRY,
)

GATEWAY_REQUEST_DURATION_SECONDS = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


# ============================================
# Transaction Metrics
# ============================================
TRANSACTION_TRANSITIONS_TOTAL = Counter(
    "transaction_transitions_total",
    "Transaction status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

TRANSACTION_TRANSITION_CONFLICTS_TOTAL = Counter(
    "transaction_transition_conflicts_total",
    "Conditional status updates rejected because the row moved on",
    ["to_status"],
    registry=REGISTRY,
)

ESCROW_RELEASES_TOTAL = Counter(
    "escrow_releases_total",
    "Escrow releases by trigger and outcome",
    ["trigger", "outcome"],
    registry=REGISTRY,
)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })


def get_metrics() -> bytes:
    """Generate the Prometheus exposition payload."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST

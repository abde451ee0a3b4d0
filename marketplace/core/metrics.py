"""Prometheus metrics for the referral engine.

Request metrics come from MetricsMiddleware. Domain counters are bumped by
the services through the record_* helpers below so the referral, commission
and payout flows can be alerted on.
"""

import re
import time
from decimal import Decimal
from typing import Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.config import settings

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


def get_registry() -> CollectorRegistry:
    """Registry to expose: multiprocess-aggregated when running several workers."""
    if settings.environment != "production":
        return REGISTRY
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    return registry


APP_INFO = Info("marketplace_referrals", "Referral engine build information")
APP_INFO.info({"version": "0.1.0", "environment": settings.environment})


# API traffic
API_REQUESTS_TOTAL = Counter(
    "api_requests_total",
    "API requests by route template and response status",
    ["method", "route", "status"],
)

API_REQUEST_SECONDS = Histogram(
    "api_request_seconds",
    "API request latency",
    ["method", "route"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

API_REQUESTS_ACTIVE = Gauge(
    "api_requests_active",
    "API requests being handled right now",
    ["method"],
)


# Agents and referrals
AGENTS_REGISTERED_TOTAL = Counter(
    "agents_registered_total",
    "Agents that completed sign-up",
)

AGENT_TRANSITIONS_TOTAL = Counter(
    "agent_transitions_total",
    "Agent lifecycle transitions applied by admins",
    ["target"],  # "active", "suspended", "rejected"
)

REFERRAL_ATTACHMENTS_TOTAL = Counter(
    "referral_attachments_total",
    "Referral attachment attempts at partner registration",
    ["result"],  # "attached", "invalid_code", "inactive_referrer", "already_attached", "failed"
)


# Ledger
PAYOUTS_TOTAL = Counter(
    "payouts_total",
    "Payout records by resulting status",
    ["status"],  # "pending", "paid", "rejected"
)

PAYOUTS_AMOUNT = Counter(
    "payouts_amount_total",
    "Payout amounts by resulting status",
    ["status"],
)

BALANCE_ANOMALIES_TOTAL = Counter(
    "balance_anomalies_total",
    "Agents found with more paid out than earned",
)


def route_label(request: Request) -> str:
    """Route template for a request, e.g. ``/api/payouts/{payout_id}``.

    Unmatched paths fall back to the raw path with UUIDs collapsed, so 404
    probes cannot blow up label cardinality.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return template
    return UUID_PATTERN.sub("{id}", request.url.path)


def record_agent_registered() -> None:
    AGENTS_REGISTERED_TOTAL.inc()


def record_agent_transition(target: str) -> None:
    AGENT_TRANSITIONS_TOTAL.labels(target=target).inc()


def record_attachment(result: str) -> None:
    """Record the outcome of a referral attachment attempt."""
    REFERRAL_ATTACHMENTS_TOTAL.labels(result=result).inc()


def record_payout(status: str, amount: Decimal) -> None:
    """Record a payout reaching a status."""
    PAYOUTS_TOTAL.labels(status=status).inc()
    PAYOUTS_AMOUNT.labels(status=status).inc(float(amount))


def record_balance_anomaly() -> None:
    BALANCE_ANOMALIES_TOTAL.inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time every API request except scrapes of /metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        active = API_REQUESTS_ACTIVE.labels(method=method)
        active.inc()
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            active.dec()
            route = route_label(request)
            API_REQUESTS_TOTAL.labels(method=method, route=route, status=status_code).inc()
            API_REQUEST_SECONDS.labels(method=method, route=route).observe(
                time.perf_counter() - started
            )


async def get_metrics() -> tuple[bytes, str]:
    """Serialize the registry in the Prometheus text format."""
    return generate_latest(get_registry()), CONTENT_TYPE_LATEST

"""Prometheus metrics middleware and domain counters for the auction engine."""
import time
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Request metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Number of active HTTP requests",
)

# Bid-specific metrics
BID_OUTCOMES = Counter(
    "auction_bids_total",
    "Bid attempts by outcome",
    ["outcome"],  # accepted, or the rejection code
)

BID_LATENCY = Histogram(
    "auction_bid_latency_seconds",
    "Bid request latency in seconds",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

ANTI_SNIPING_EXTENSIONS = Counter(
    "auction_anti_sniping_extensions_total",
    "Bids that extended an auction's end time",
)

# Settlement and sweep metrics
SETTLEMENTS = Counter(
    "auction_settlements_total",
    "Auction settlement outcomes",
    ["outcome"],  # ended_pending_payment, ended_no_bids, closed_won, closed_failed
)

SWEEP_ROWS = Counter(
    "auction_sweep_rows_total",
    "Rows handled by the expiration sweep",
    ["stage", "result"],  # result: done, skipped, error
)


# =============================================================================
# Metrics Middleware
# =============================================================================

class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for all HTTP requests."""

    # Endpoints to normalize for metrics (reduce cardinality)
    ENDPOINT_PATTERNS = {
        "/api/v1/auctions": "/api/v1/auctions",
        "/api/v1/admin": "/api/v1/admin",
        "/api/v1/webhooks": "/api/v1/webhooks",
        "/api/v1/cron": "/api/v1/cron",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            ACTIVE_REQUESTS.dec()
            latency = time.perf_counter() - start_time
            endpoint = self._normalize_endpoint(request.url.path)

            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status=status_code,
            ).inc()

            REQUEST_LATENCY.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(latency)

            if request.method == "POST" and request.url.path.endswith("/bids"):
                BID_LATENCY.observe(latency)

        return response

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce metric cardinality."""
        if path.startswith("/api/v1/auctions") and path.endswith("/bids"):
            return "/api/v1/auctions/{id}/bids"

        for pattern, normalized in self.ENDPOINT_PATTERNS.items():
            if path.startswith(pattern):
                return normalized

        if path in ("/health", "/metrics"):
            return path

        return "/other"


# =============================================================================
# Metrics Endpoint
# =============================================================================

async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics scrape endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# =============================================================================
# Helper Functions for Manual Metric Recording
# =============================================================================

def record_bid_outcome(outcome: str) -> None:
    BID_OUTCOMES.labels(outcome=outcome).inc()


def record_anti_sniping_extension() -> None:
    ANTI_SNIPING_EXTENSIONS.inc()


def record_settlement(outcome: str) -> None:
    SETTLEMENTS.labels(outcome=outcome).inc()


def record_sweep_row(stage: str, result: str) -> None:
    SWEEP_ROWS.labels(stage=stage, result=result).inc()

"""
Prometheus metrics for catalog sync and webhook traffic.

Metrics exported:
- menu_sync_requests_total: Total HTTP requests
- menu_sync_request_duration_seconds: Request duration histogram
- menu_sync_catalog_operations_total: Single-product sync outcomes by action
- menu_sync_batch_products_total: Products submitted in batches by status
- menu_sync_webhook_events_total: Webhook deliveries by outcome
"""

import re
import time
from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

_UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_NUMERIC_ID_RE = re.compile(r"/\d+")


class PrometheusMetrics:
    """Prometheus metrics collector for Menu Sync."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize Prometheus metrics.

        Args:
            registry: Prometheus registry (optional, uses default if not provided)
        """
        kwargs = {"registry": registry} if registry is not None else {}

        self.requests_total = Counter(
            "menu_sync_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            **kwargs,
        )

        self.request_duration = Histogram(
            "menu_sync_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            **kwargs,
        )

        self.catalog_operations_total = Counter(
            "menu_sync_catalog_operations_total",
            "Single-product catalog sync outcomes",
            ["action", "status"],
            **kwargs,
        )

        self.batch_products_total = Counter(
            "menu_sync_batch_products_total",
            "Products processed by batch catalog syncs",
            ["status"],
            **kwargs,
        )

        self.webhook_events_total = Counter(
            "menu_sync_webhook_events_total",
            "Inbound webhook deliveries",
            ["outcome"],
            **kwargs,
        )

        logger.debug("Prometheus metrics initialized")

    def track_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def track_catalog_operation(self, action: Optional[str], success: bool):
        """
        Track one single-product sync outcome.

        Args:
            action: create, update, delete, skip or None when the call failed early
            success: Whether the result was successful
        """
        self.catalog_operations_total.labels(
            action=action or "none",
            status="success" if success else "failed",
        ).inc()

    def track_batch(self, synced: int, failed: int, skipped: int):
        for status, count in (("synced", synced), ("failed", failed), ("skipped", skipped)):
            if count:
                self.batch_products_total.labels(status=status).inc(count)

    def track_webhook(self, outcome: str):
        self.webhook_events_total.labels(outcome=outcome).inc()


# Global metrics instance
_metrics: Optional[PrometheusMetrics] = None


def get_metrics() -> PrometheusMetrics:
    """Get global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = PrometheusMetrics()
    return _metrics


class MetricsMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for automatic request metrics collection."""

    def __init__(self, app):
        super().__init__(app)
        self.metrics = get_metrics()

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            self.metrics.track_request(
                method=request.method,
                endpoint=self._normalize_endpoint(request.url.path),
                status_code=status_code,
                duration=time.time() - start_time,
            )

    @staticmethod
    def _normalize_endpoint(path: str) -> str:
        """Replace UUIDs and numeric ids with placeholders to bound label cardinality."""
        path = _UUID_RE.sub("{uuid}", path)
        return _NUMERIC_ID_RE.sub("/{id}", path)

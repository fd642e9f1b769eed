"""
Monitoring module for metrics.
"""

from .metrics import PrometheusMetrics, MetricsMiddleware, get_metrics

__all__ = [
    "PrometheusMetrics",
    "MetricsMiddleware",
    "get_metrics",
]

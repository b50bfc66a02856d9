"""Observability helpers for ScheduleScan."""

from .metrics import MetricsRegistry, RequestMetricsMiddleware, metrics_registry

__all__ = [
    "MetricsRegistry",
    "RequestMetricsMiddleware",
    "metrics_registry",
]

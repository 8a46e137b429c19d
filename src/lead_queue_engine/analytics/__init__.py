"""Dashboard metrics."""

from .metrics import MetricsAggregator

__all__ = ["MetricsAggregator"]

"""Prometheus metrics for sync refreshes and server connectivity."""

from __future__ import annotations

from photonic_chain.metrics.collector import ChainMetrics, MetricsCollector

__all__ = ["ChainMetrics", "MetricsCollector"]

"""Metrics collector — Prometheus counters, gauges, histograms.

- ``photonic_sync_refresh_total`` counter (outcome: ok, unchanged, failed, superseded)
- ``photonic_sync_refresh_histogram``
- ``photonic_unspent_outputs`` gauge per script hash
- ``photonic_failover_total`` / ``photonic_pause_total`` counters
- ``photonic_connected`` gauge
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

_PREFIX = "photonic"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`ChainMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class ChainMetrics:
    """Sync and connection metrics for one chain client."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._refresh = self._collector.counter(
            f"{_PREFIX}_sync_refresh_total",
            "Script status events handled, by outcome",
            ("outcome",),
        )
        self._refresh_duration = self._collector.histogram(
            f"{_PREFIX}_sync_refresh_histogram",
            "Duration of unspent-set refreshes",
        )
        self._unspent = self._collector.gauge(
            f"{_PREFIX}_unspent_outputs",
            "Unspent outputs reported by the server for a tracked script",
            ("script_hash",),
        )
        self._failover = self._collector.counter(
            f"{_PREFIX}_failover_total",
            "Moves to the next ElectrumX server",
        )
        self._pause = self._collector.counter(
            f"{_PREFIX}_pause_total",
            "Cool-down pauses after every server failed",
        )
        self._connected = self._collector.gauge(
            f"{_PREFIX}_connected",
            "1 while a server connection is live",
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    def record_refresh(self, outcome: str) -> None:
        self._refresh.labels(outcome=outcome).inc()

    def set_unspent_count(self, script_hash: str, count: int) -> None:
        self._unspent.labels(script_hash=script_hash).set(count)

    def record_failover(self) -> None:
        self._failover.inc()

    def record_pause(self) -> None:
        self._pause.inc()

    def set_connected(self, connected: bool) -> None:
        self._connected.set(1 if connected else 0)

    @contextmanager
    def track_refresh(self) -> Iterator[None]:
        """Track the duration of one unspent-set refresh."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._refresh_duration.observe(time.monotonic() - start)

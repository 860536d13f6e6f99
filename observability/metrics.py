"""
Prometheus metrics for the actuator subsystem.

Provides the export sink used to publish callback-backed gauges (per-endpoint
request stats, dependency availability) and the self-metrics describing the
sampling, aggregation and health-check cycles.
"""

import math
import threading
from typing import Callable, Dict, Tuple

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

from .store import ConcurrentKeySet


class GaugeExportSink:
    """Registers pull-based gauges, each backed by a value-producing callback.

    Gauges are grouped by metric name with a single label; registration is
    idempotent per ``(name, label value)`` pair.
    """

    def __init__(self, registry: CollectorRegistry):
        self.registry = registry
        self._gauges: Dict[str, Tuple[Gauge, str]] = {}
        self._registered: ConcurrentKeySet = ConcurrentKeySet()
        self._lock = threading.Lock()

    def _gauge_for(self, name: str, description: str, tag: str) -> Gauge:
        with self._lock:
            existing = self._gauges.get(name)
            if existing is not None:
                gauge, known_tag = existing
                if known_tag != tag:
                    raise ValueError(
                        f"Gauge {name} is labelled by '{known_tag}', not '{tag}'"
                    )
                return gauge
            gauge = Gauge(name, description, [tag], registry=self.registry)
            self._gauges[name] = (gauge, tag)
            return gauge

    def register(self, name: str, description: str, tag: str, value: str,
                 callback: Callable[[], float]) -> bool:
        """Register ``callback`` as the gauge ``name{tag=value}``.

        Returns False when that pair is already registered.
        """
        gauge = self._gauge_for(name, description, tag)
        if not self._registered.add_if_absent((name, value)):
            return False

        def read():
            try:
                return float(callback())
            except Exception:
                return math.nan

        gauge.labels(**{tag: value}).set_function(read)
        return True

    def __len__(self) -> int:
        return len(self._registered)


class MonitorMetrics:
    """Self-metrics for the actuator cycles."""

    def __init__(self, registry: CollectorRegistry):
        self.registry = registry
        self._setup_metrics()

    def _setup_metrics(self):
        self.aggregation_cycles_total = Counter(
            'actuator_aggregation_cycles_total',
            'Stats aggregation cycles executed',
            ['result'],
            registry=self.registry
        )

        self.aggregation_duration = Histogram(
            'actuator_aggregation_duration_seconds',
            'Stats aggregation cycle duration in seconds',
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, float('inf')),
            registry=self.registry
        )

        self.registered_api_keys = Gauge(
            'actuator_registered_api_keys',
            'Number of endpoint keys exported as gauges',
            registry=self.registry
        )

        self.trend_ticks_total = Counter(
            'actuator_trend_ticks_total',
            'Trend sampling ticks executed',
            registry=self.registry
        )

        self.health_checks_total = Counter(
            'actuator_health_checks_total',
            'Dependency health checks executed',
            ['service', 'result'],
            registry=self.registry
        )

        self.health_check_duration = Histogram(
            'actuator_health_check_duration_seconds',
            'Dependency health check duration in seconds',
            ['service'],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf')),
            registry=self.registry
        )

        self.alerts_sent_total = Counter(
            'actuator_alerts_sent_total',
            'Dependency down alerts emitted',
            ['service'],
            registry=self.registry
        )

        self.source_read_failures_total = Counter(
            'actuator_source_read_failures_total',
            'Failed reads from sample sources',
            ['source'],
            registry=self.registry
        )

    def record_aggregation_cycle(self, result: str, duration: float):
        """Record an aggregation cycle outcome."""
        self.aggregation_cycles_total.labels(result=result).inc()
        self.aggregation_duration.observe(duration)

    def update_registered_keys(self, count: int):
        self.registered_api_keys.set(count)

    def record_trend_tick(self):
        self.trend_ticks_total.inc()

    def record_health_check(self, service: str, available: bool, duration: float):
        """Record a dependency check."""
        self.health_checks_total.labels(
            service=service,
            result="up" if available else "down"
        ).inc()
        self.health_check_duration.labels(service=service).observe(duration)

    def record_alert_sent(self, service: str):
        self.alerts_sent_total.labels(service=service).inc()

    def record_source_read_failure(self, source: str):
        self.source_read_failures_total.labels(source=source).inc()


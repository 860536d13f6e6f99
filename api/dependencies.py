"""
Process wiring and FastAPI dependencies.

``build_context`` creates every shared table and component once per process
and injects them into each other; request handlers reach them through the
``get_context`` dependency.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Request
from prometheus_client import CollectorRegistry

from observability.alerts import AlertNotifier
from observability.api_load import MetricKeyRegistry, StatsAggregator
from observability.config import MonitorConfig
from observability.health import DependencyHealthMonitor
from observability.logging import configure_log_level, api_logger
from observability.metrics import GaugeExportSink, MonitorMetrics
from observability.store import ConcurrentKeySet, ConcurrentTable
from observability.system import ProcessResourceSource, ResourceUsageSource
from observability.timers import RequestTimerRegistry
from observability.trend import TrendBuffer
from scheduler.tick import MonitoringScheduler

AGGREGATION_JOB_ID = "api-stats-refresh"
TREND_JOB_ID = "system-trend-24h"


@dataclass
class MonitoringContext:
    """Every process-owned component of the actuator subsystem."""
    config: MonitorConfig
    registry: CollectorRegistry
    metrics: MonitorMetrics
    sink: GaugeExportSink
    timers: RequestTimerRegistry
    key_registry: MetricKeyRegistry
    aggregator: StatsAggregator
    resources: ResourceUsageSource
    trend: TrendBuffer
    notifier: AlertNotifier
    health: DependencyHealthMonitor
    scheduler: MonitoringScheduler

    def start(self):
        """Register known endpoints and start the periodic tasks."""
        self.key_registry.register_discovered()
        self.scheduler.schedule_fixed_delay(
            AGGREGATION_JOB_ID, self.aggregator.run_cycle, self.config.aggregation_interval
        )
        self.scheduler.schedule_fixed_rate(
            TREND_JOB_ID, self.trend.tick, self.config.trend_interval
        )
        self.scheduler.start()
        api_logger.info(
            "Actuator tasks started",
            aggregation_interval=self.config.aggregation_interval,
            trend_interval=self.config.trend_interval,
            dependencies=list(self.health.dependencies)
        )

    def stop(self):
        """Stop ticking and release held resources."""
        self.scheduler.shutdown(wait=True)
        self.health.close()
        close = getattr(self.resources, "close", None)
        if close is not None:
            close()


def build_context(config: Optional[MonitorConfig] = None, *,
                  timers: Optional[RequestTimerRegistry] = None,
                  resources: Optional[ResourceUsageSource] = None,
                  notify: Optional[Callable[[str], None]] = None,
                  pools: Optional[Dict[str, Any]] = None,
                  transport: Optional[httpx.AsyncBaseTransport] = None,
                  registry: Optional[CollectorRegistry] = None) -> MonitoringContext:
    """Create the shared tables and components for one process."""
    config = config or MonitorConfig.from_environment()
    configure_log_level(config.log_level)

    registry = registry or CollectorRegistry()
    metrics = MonitorMetrics(registry)
    sink = GaugeExportSink(registry)
    timers = timers or RequestTimerRegistry()

    stats_table: ConcurrentTable = ConcurrentTable()
    key_registry = MetricKeyRegistry(timers, stats_table, ConcurrentKeySet(), sink, metrics=metrics)
    aggregator = StatsAggregator(timers, stats_table, key_registry, metrics=metrics)

    resources = resources or ProcessResourceSource()
    trend = TrendBuffer(resources, capacity=config.trend_capacity, metrics=metrics)

    notifier = AlertNotifier(
        ConcurrentTable(),
        environment=config.environment,
        timezone_name=config.alert_timezone,
        notify=notify,
        metrics=metrics
    )
    health = DependencyHealthMonitor(
        config.dependencies,
        notifier,
        http_timeout=config.http_timeout,
        handshake_timeout=config.handshake_timeout,
        database_timeout=config.database_timeout,
        pools=pools,
        transport=transport,
        sink=sink,
        metrics=metrics
    )

    return MonitoringContext(
        config=config,
        registry=registry,
        metrics=metrics,
        sink=sink,
        timers=timers,
        key_registry=key_registry,
        aggregator=aggregator,
        resources=resources,
        trend=trend,
        notifier=notifier,
        health=health,
        scheduler=MonitoringScheduler()
    )


def get_context(request: Request) -> MonitoringContext:
    """Dependency returning the process's monitoring context."""
    return request.app.state.context

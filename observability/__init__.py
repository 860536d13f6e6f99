"""
Observability package for the runtime actuators.

Provides per-endpoint request statistics, 24-hour system trend buffers,
dependency health checks with once-per-outage alerting, Prometheus export
and structured JSON logging.
"""

from .api_load import ApiStatsEntry, MetricKeyRegistry, StatsAggregator
from .alerts import AlertNotifier, ServiceState, ServiceStatus
from .config import DependencyConfig, MonitorConfig
from .health import DependencyHealthMonitor, DependencyHealthReport, HealthCheck
from .logging import StructuredLogger, set_request_context, generate_request_id
from .metrics import GaugeExportSink, MonitorMetrics
from .store import ConcurrentKeySet, ConcurrentTable
from .system import ProcessResourceSource, ResourceUsageSource, system_snapshot
from .timers import RequestTimerRegistry
from .trend import TrendBuffer, TrendSeries

__all__ = [
    "ApiStatsEntry",
    "MetricKeyRegistry",
    "StatsAggregator",
    "AlertNotifier",
    "ServiceState",
    "ServiceStatus",
    "DependencyConfig",
    "MonitorConfig",
    "DependencyHealthMonitor",
    "DependencyHealthReport",
    "HealthCheck",
    "StructuredLogger",
    "set_request_context",
    "generate_request_id",
    "GaugeExportSink",
    "MonitorMetrics",
    "ConcurrentKeySet",
    "ConcurrentTable",
    "ProcessResourceSource",
    "ResourceUsageSource",
    "system_snapshot",
    "RequestTimerRegistry",
    "TrendBuffer",
    "TrendSeries",
]

"""
Per-endpoint request statistics.

``StatsAggregator`` periodically re-reads the raw request timers, merges every
timer sharing a ``"<METHOD> <URI>"`` key and overwrites that key's entry in
the shared stats table. ``MetricKeyRegistry`` exports each key exactly once as
three gauges whose callbacks read the live table at scrape time.
"""

import time
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, Optional, Set

from .logging import StructuredLogger, aggregator_logger, set_request_context, clear_request_context, generate_cycle_id
from .metrics import GaugeExportSink, MonitorMetrics
from .store import ConcurrentKeySet, ConcurrentTable
from .timers import HTTP_SERVER_REQUESTS, group_by_key

API_TAG = "api"

# (gauge name, description, ApiStatsEntry field)
API_GAUGES = (
    ("api_request_count", "Requests observed for the endpoint", "count"),
    ("api_request_avg_seconds", "Average request duration for the endpoint", "avg"),
    ("api_request_max_seconds", "Maximum request duration for the endpoint", "max"),
)


@dataclass(frozen=True)
class ApiStatsEntry:
    """Aggregated stats for one endpoint key; durations in seconds."""
    count: int = 0
    avg: float = 0.0
    max: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


EMPTY_STATS = ApiStatsEntry()


def merge_timers(timers: Iterable) -> ApiStatsEntry:
    """Sum counts and total times, take the max of maxes."""
    total_count = 0
    total_time = 0.0
    max_time = 0.0

    for timer in timers:
        total_count += int(timer.count)
        total_time += float(timer.total_time)
        max_time = max(max_time, float(timer.max))

    avg_time = total_time / total_count if total_count > 0 else 0.0
    return ApiStatsEntry(count=total_count, avg=avg_time, max=max_time)


def _stats_reader(table: ConcurrentTable, key: str, field: str):
    def read() -> float:
        return getattr(table.get(key, EMPTY_STATS), field)
    return read


class MetricKeyRegistry:
    """Discovers endpoint keys and exports each one exactly once."""

    def __init__(self, source, stats_table: ConcurrentTable, registered: ConcurrentKeySet,
                 sink: GaugeExportSink, metrics: Optional[MonitorMetrics] = None,
                 logger: StructuredLogger = aggregator_logger):
        self.source = source
        self.stats_table = stats_table
        self.registered = registered
        self.sink = sink
        self.metrics = metrics
        self.logger = logger

    def discover_keys(self) -> Set[str]:
        """Current ``"<METHOD> <URI>"`` keys; timers missing a tag are skipped."""
        return set(group_by_key(self.source.timers(HTTP_SERVER_REQUESTS)))

    def ensure_registered(self, key: str) -> bool:
        """Export gauges for ``key`` unless already done. Returns True if newly registered."""
        if not self.registered.add_if_absent(key):
            return False

        self.stats_table.compute_if_absent(key, ApiStatsEntry)
        try:
            for name, description, field in API_GAUGES:
                self.sink.register(name, description, API_TAG, key,
                                   _stats_reader(self.stats_table, key, field))
        except Exception:
            # Allow the next cycle to retry; sink registration is idempotent per pair.
            self.registered.discard(key)
            raise

        self.logger.info(f"Registered endpoint gauges for {key}", api=key, event_type="api_key_registered")
        if self.metrics:
            self.metrics.update_registered_keys(len(self.registered))
        return True

    def register_discovered(self) -> int:
        """Discover keys and register the new ones. Returns how many were new."""
        try:
            keys = self.discover_keys()
        except Exception as e:
            self.logger.source_read_failed("request_timers", None, str(e))
            if self.metrics:
                self.metrics.record_source_read_failure("request_timers")
            return 0

        new_keys = 0
        for key in sorted(keys):
            try:
                if self.ensure_registered(key):
                    new_keys += 1
            except Exception as e:
                self.logger.error(f"Failed to register gauges for {key}: {e}", api=key, error=str(e))
        return new_keys

    def __len__(self) -> int:
        return len(self.registered)


class StatsAggregator:
    """Recomputes count/avg/max per endpoint key from the raw timers."""

    def __init__(self, source, stats_table: ConcurrentTable, key_registry: MetricKeyRegistry,
                 metrics: Optional[MonitorMetrics] = None,
                 logger: StructuredLogger = aggregator_logger):
        self.source = source
        self.stats_table = stats_table
        self.key_registry = key_registry
        self.metrics = metrics
        self.logger = logger

    def run_cycle(self) -> Dict[str, ApiStatsEntry]:
        """Run one full recompute. Returns the entries written this cycle."""
        set_request_context(cycle_id=generate_cycle_id("aggregate"))
        start_time = time.perf_counter()
        try:
            try:
                groups = group_by_key(self.source.timers(HTTP_SERVER_REQUESTS))
            except Exception as e:
                self.logger.source_read_failed("request_timers", None, str(e))
                if self.metrics:
                    self.metrics.record_source_read_failure("request_timers")
                    self.metrics.record_aggregation_cycle("error", time.perf_counter() - start_time)
                return {}

            updated: Dict[str, ApiStatsEntry] = {}
            skipped = 0
            for key, timers in groups.items():
                try:
                    entry = merge_timers(timers)
                except Exception as e:
                    # Keep the previous entry for this key
                    skipped += 1
                    self.logger.source_read_failed("request_timers", key, str(e))
                    if self.metrics:
                        self.metrics.record_source_read_failure("request_timers")
                    continue
                self.stats_table.put(key, entry)
                updated[key] = entry

            new_keys = self.key_registry.register_discovered()

            duration = time.perf_counter() - start_time
            if self.metrics:
                self.metrics.record_aggregation_cycle("partial" if skipped else "success", duration)
            self.logger.aggregation_cycle(len(updated), skipped, new_keys, duration * 1000)
            return updated
        finally:
            clear_request_context()

    def stats(self) -> Dict[str, ApiStatsEntry]:
        return self.stats_table.snapshot()

    def api_load(self, profile: str) -> Dict[str, Dict[str, float]]:
        """Stats keyed ``"<profile> -> <METHOD> <PATH>"``."""
        return {
            f"{profile} -> {key}": entry.to_dict()
            for key, entry in sorted(self.stats_table.snapshot().items())
        }

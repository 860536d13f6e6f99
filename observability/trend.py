"""
24-hour trend buffers for the system signals.

Each tick samples every tracked signal once and appends the value to that
signal's fixed-capacity ring; the oldest value is evicted when the ring is
full. A signal whose read fails records 0.0 for that tick.
"""

import threading
from collections import deque
from typing import Callable, Dict, List, Optional

from .logging import StructuredLogger, trend_logger
from .metrics import MonitorMetrics
from .system import (
    ResourceUsageSource, cpu_usage_percent, gc_pause_millis, heap_usage,
    heap_usage_percent, live_threads,
)

DEFAULT_CAPACITY = 1440


class TrendSeries:
    """Fixed-capacity FIFO of floats, oldest first."""

    def __init__(self, name: str, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"Trend capacity must be positive, got {capacity}")
        self.name = name
        self.capacity = capacity
        self._values = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, value: float):
        with self._lock:
            self._values.append(value)

    def values(self) -> List[float]:
        with self._lock:
            return list(self._values)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


def _heap_percent_or_zero(source: ResourceUsageSource) -> float:
    used, maximum = heap_usage(source)
    percent = heap_usage_percent(used, maximum)
    return percent if percent is not None else 0.0


SIGNALS: Dict[str, Callable[[ResourceUsageSource], Optional[float]]] = {
    "cpuUsagePercent": cpu_usage_percent,
    "heapUsagePercent": _heap_percent_or_zero,
    "liveThreads": live_threads,
    "gcPauseMillis": gc_pause_millis,
}


class TrendBuffer:
    """Samples the system signals into one TrendSeries each."""

    def __init__(self, source: ResourceUsageSource, capacity: int = DEFAULT_CAPACITY,
                 metrics: Optional[MonitorMetrics] = None,
                 logger: StructuredLogger = trend_logger):
        self.source = source
        self.metrics = metrics
        self.logger = logger
        self.series: Dict[str, TrendSeries] = {
            name: TrendSeries(name, capacity) for name in SIGNALS
        }

    def _read(self, name: str) -> float:
        try:
            value = SIGNALS[name](self.source)
        except Exception as e:
            self.logger.source_read_failed("resource_usage", name, str(e))
            if self.metrics:
                self.metrics.record_source_read_failure("resource_usage")
            return 0.0
        return float(value) if value is not None else 0.0

    def tick(self) -> Dict[str, float]:
        """Sample every signal once. Returns the appended values."""
        sampled = {}
        for name, series in self.series.items():
            value = self._read(name)
            series.append(value)
            sampled[name] = value

        if self.metrics:
            self.metrics.record_trend_tick()
        self.logger.debug("Trend tick completed", event_type="trend_tick", **sampled)
        return sampled

    def snapshot(self) -> Dict[str, List[float]]:
        """Independent copy of every series, oldest first."""
        return {name: series.values() for name, series in self.series.items()}

"""
Process resource usage: CPU, memory regions, live threads and GC pauses.

``ProcessResourceSource`` exposes the signals by name the way a metrics
registry would (``cpu.usage``, ``threads.live``, ``gc.pause`` and the
``memory.used`` / ``memory.max`` regions tagged by area). ``system_snapshot``
turns them into the JSON shape served by the system-health endpoint; every
field degrades to ``None`` on its own when its read fails.
"""

import gc
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import psutil

from .logging import StructuredLogger, api_logger

MB = 1024 * 1024

CPU_USAGE = "cpu.usage"
THREADS_LIVE = "threads.live"
GC_PAUSE = "gc.pause"
MEMORY_USED = "memory.used"
MEMORY_MAX = "memory.max"
HEAP = "heap"
NON_HEAP = "nonheap"


class ResourceUsageSource(Protocol):
    """Named scalar gauges, cumulative timers and area-tagged memory regions."""

    def gauge(self, name: str) -> Optional[float]:
        """Current value of a gauge, or None if unknown."""

    def timer_total(self, name: str) -> Optional[float]:
        """Cumulative total time of a timer in seconds, or None if unknown."""

    def memory(self, name: str, area: str) -> List[float]:
        """Values of every memory region tagged with ``area``."""


@dataclass
class MemoryRegion:
    id: str
    area: str
    used: float
    max: float


class GcPauseTimer:
    """Times garbage collections through ``gc.callbacks``."""

    def __init__(self):
        self._started: Optional[float] = None
        self.count = 0
        self.total_time = 0.0
        self.max = 0.0

    def __call__(self, phase: str, info: Dict[str, Any]):
        if phase == "start":
            self._started = time.perf_counter()
        elif phase == "stop" and self._started is not None:
            elapsed = time.perf_counter() - self._started
            self._started = None
            self.count += 1
            self.total_time += elapsed
            if elapsed > self.max:
                self.max = elapsed

    def install(self):
        if self not in gc.callbacks:
            gc.callbacks.append(self)

    def uninstall(self):
        if self in gc.callbacks:
            gc.callbacks.remove(self)


class ProcessResourceSource:
    """Resource usage of the current process, read through psutil."""

    def __init__(self, process: Optional[psutil.Process] = None,
                 gc_timer: Optional[GcPauseTimer] = None):
        self.process = process or psutil.Process()
        self.gc_timer = gc_timer or GcPauseTimer()
        self.gc_timer.install()
        # First call only primes psutil's CPU counters
        psutil.cpu_percent(interval=None)

    def gauge(self, name: str) -> Optional[float]:
        if name == CPU_USAGE:
            return psutil.cpu_percent(interval=None) / 100.0
        if name == THREADS_LIVE:
            return float(self.process.num_threads())
        return None

    def timer_total(self, name: str) -> Optional[float]:
        if name == GC_PAUSE:
            return self.gc_timer.total_time
        return None

    def regions(self) -> List[MemoryRegion]:
        """Resident set as the heap region, swap as the non-heap region."""
        rss = self.process.memory_info().rss
        physical = psutil.virtual_memory().total
        swap = psutil.swap_memory()
        return [
            MemoryRegion(id="rss", area=HEAP, used=float(rss), max=float(physical)),
            MemoryRegion(id="swap", area=NON_HEAP, used=float(swap.used), max=float(swap.total)),
        ]

    def memory(self, name: str, area: str) -> List[float]:
        if name not in (MEMORY_USED, MEMORY_MAX):
            return []
        return [
            region.used if name == MEMORY_USED else region.max
            for region in self.regions()
            if region.area == area
        ]

    def close(self):
        self.gc_timer.uninstall()


def cpu_usage_percent(source: ResourceUsageSource) -> Optional[float]:
    value = source.gauge(CPU_USAGE)
    return value * 100 if value is not None else None


def live_threads(source: ResourceUsageSource) -> Optional[float]:
    return source.gauge(THREADS_LIVE)


def gc_pause_millis(source: ResourceUsageSource) -> Optional[float]:
    value = source.timer_total(GC_PAUSE)
    return value * 1000 if value is not None else None


def heap_usage(source: ResourceUsageSource) -> Tuple[float, float]:
    """(used bytes, max bytes) summed over every heap region."""
    used = sum(source.memory(MEMORY_USED, HEAP))
    maximum = sum(source.memory(MEMORY_MAX, HEAP))
    return used, maximum


def heap_usage_percent(used: float, maximum: float) -> Optional[float]:
    """``100 * used / max``, or None when max is not positive."""
    if maximum <= 0:
        return None
    return used / maximum * 100


def system_snapshot(source: ResourceUsageSource, metrics=None,
                    logger: StructuredLogger = api_logger) -> Dict[str, Optional[float]]:
    """Current system signals; a field whose read fails is None."""

    def safe(signal: str, reader):
        try:
            return reader()
        except Exception as e:
            logger.source_read_failed("resource_usage", signal, str(e))
            if metrics:
                metrics.record_source_read_failure("resource_usage")
            return None

    snapshot: Dict[str, Optional[float]] = {
        "cpuUsagePercent": safe("cpuUsagePercent", lambda: cpu_usage_percent(source)),
    }

    heap = safe("heap", lambda: heap_usage(source))
    if heap is None:
        snapshot.update(heapUsedMB=None, heapMaxMB=None, heapUsagePercent=None)
    else:
        used, maximum = heap
        snapshot.update(
            heapUsedMB=used / MB,
            heapMaxMB=maximum / MB,
            heapUsagePercent=heap_usage_percent(used, maximum),
        )

    threads = safe("liveThreads", lambda: live_threads(source))
    snapshot["liveThreads"] = int(threads) if threads is not None else None
    snapshot["gcPauseMillis"] = safe("gcPauseMillis", lambda: gc_pause_millis(source))
    return snapshot

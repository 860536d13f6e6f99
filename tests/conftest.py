#!/usr/bin/env python3
"""
pytest configuration for the actuator tests.

Provides in-memory fakes for the raw timer source, the resource-usage source
and the connection pool, plus fresh Prometheus registries per test.
"""

import os
import sys
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

import pytest
from prometheus_client import CollectorRegistry

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from observability.alerts import AlertNotifier
from observability.metrics import GaugeExportSink, MonitorMetrics
from observability.store import ConcurrentTable

MB = 1024 * 1024


class FakeTimer:
    """Timer-like object with fixed readings."""

    def __init__(self, method: Optional[str], uri: Optional[str], count: int,
                 total_time: float, max_time: float, status: str = "200"):
        self.tags = {"status": status}
        if method is not None:
            self.tags["method"] = method
        if uri is not None:
            self.tags["uri"] = uri
        self.count = count
        self.total_time = total_time
        self.max = max_time


class BrokenTimer(FakeTimer):
    """Timer whose count read fails."""

    @property
    def count(self):
        raise RuntimeError("timer read failed")

    @count.setter
    def count(self, value):
        pass


class FakeTimerSource:
    """Raw sample source whose timers are replaced by the test."""

    def __init__(self, timers: Optional[List] = None):
        self.timers_list = list(timers or [])
        self.fail = False
        self.names_requested: List[str] = []

    def timers(self, name: str):
        self.names_requested.append(name)
        if self.fail:
            raise ConnectionError("timer source unavailable")
        return list(self.timers_list)


class FakeResourceSource:
    """Resource-usage source with configurable values and failures."""

    def __init__(self, gauges: Optional[Dict[str, float]] = None,
                 timers: Optional[Dict[str, float]] = None,
                 memory: Optional[Dict[Tuple[str, str], List[float]]] = None):
        self.gauges = dict(gauges or {})
        self.timers = dict(timers or {})
        self.memory_regions = dict(memory or {})
        self.failing = set()

    def _check(self, name: str):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def gauge(self, name: str):
        self._check(name)
        return self.gauges.get(name)

    def timer_total(self, name: str):
        self._check(name)
        return self.timers.get(name)

    def memory(self, name: str, area: str):
        self._check(name)
        return list(self.memory_regions.get((name, area), []))


class FakeConnection:
    def __init__(self, closed: bool = False, fail: bool = False):
        self._closed = closed
        self._fail = fail

    @property
    def closed(self):
        if self._fail:
            raise RuntimeError("availability test failed")
        return self._closed


class LeaseCountingPool:
    """Connection pool counting outstanding leases."""

    def __init__(self, closed: bool = False, fail_check: bool = False, fail_acquire: bool = False):
        self.closed = closed
        self.fail_check = fail_check
        self.fail_acquire = fail_acquire
        self.outstanding = 0
        self.acquired = 0
        self._lock = threading.Lock()

    @contextmanager
    def connect(self):
        if self.fail_acquire:
            raise ConnectionError("pool exhausted")
        with self._lock:
            self.outstanding += 1
            self.acquired += 1
        try:
            yield FakeConnection(closed=self.closed, fail=self.fail_check)
        finally:
            with self._lock:
                self.outstanding -= 1


@pytest.fixture
def registry():
    """Fresh Prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MonitorMetrics(registry)


@pytest.fixture
def sink(registry):
    return GaugeExportSink(registry)


@pytest.fixture
def timer_source():
    return FakeTimerSource()


@pytest.fixture
def resource_source():
    return FakeResourceSource(
        gauges={"cpu.usage": 0.25, "threads.live": 42},
        timers={"gc.pause": 1.5},
        memory={
            ("memory.used", "heap"): [256 * MB, 256 * MB],
            ("memory.max", "heap"): [512 * MB, 512 * MB],
            ("memory.used", "nonheap"): [64 * MB],
            ("memory.max", "nonheap"): [128 * MB],
        },
    )


@pytest.fixture
def notifications():
    """Messages delivered to the notification collaborator."""
    return []


@pytest.fixture
def notifier(notifications, metrics):
    return AlertNotifier(
        ConcurrentTable(),
        environment="test",
        timezone_name="Asia/Kolkata",
        notify=notifications.append,
        metrics=metrics,
    )

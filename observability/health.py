"""
External dependency health monitoring.

Probes every configured dependency with the check matching its protocol:

- ``http_post`` / ``http_get``: one request, available iff the status is 2xx
- ``websocket``: a WebSocket handshake bounded by a hard timeout
- ``database``: a pooled connection leased, checked open and released

Any failure, whatever its cause, makes the dependency unavailable. Failures
go through ``AlertNotifier.send_alert_once`` and successes re-arm the alert.
"""

import time
import asyncio
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional, Any

import httpx
import websockets
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .alerts import AlertNotifier, ServiceState
from .config import DependencyConfig
from .logging import StructuredLogger, health_logger, SERVICE
from .metrics import GaugeExportSink, MonitorMetrics
from .store import ConcurrentTable

AVAILABLE = "Available"
UNAVAILABLE = "Unavailable"

# Grace period for a successful handshake to finish its closing handshake
WEBSOCKET_CLOSE_GRACE = 1.0


class DependencyKind(str, Enum):
    """Probe protocol of a dependency."""
    HTTP_POST = "http_post"
    HTTP_GET = "http_get"
    WEBSOCKET = "websocket"
    DATABASE = "database"


class ProbeFailed(Exception):
    """A probe reached a definitive negative answer."""


@dataclass
class HealthCheck:
    """Individual dependency check result."""
    name: str
    kind: str
    available: bool
    duration_ms: float
    timestamp: str
    error: Optional[str] = None

    @property
    def detail(self) -> str:
        return AVAILABLE if self.available else UNAVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result['detail'] = self.detail
        return result


@dataclass
class DependencyHealthReport:
    """Aggregate health of every dependency."""
    status: ServiceState
    timestamp: str
    checks: List[HealthCheck]

    @property
    def up(self) -> bool:
        return self.status == ServiceState.UP

    @property
    def details(self) -> Dict[str, str]:
        return {check.name: check.detail for check in self.checks}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'timestamp': self.timestamp,
            'details': self.details,
            'checks': [check.to_dict() for check in self.checks]
        }


def create_pool_engine(url: str, pool_timeout: float) -> Engine:
    """SQLAlchemy engine used as the connection pool of a database dependency."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False}
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=1,
        pool_timeout=pool_timeout,
        pool_recycle=3600
    )


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class DependencyHealthMonitor:
    """Probes external dependencies on demand and tracks their UP/DOWN state."""

    def __init__(self, dependencies: List[DependencyConfig], notifier: AlertNotifier,
                 http_timeout: float = 5.0, handshake_timeout: float = 3.0,
                 database_timeout: float = 5.0, pools: Optional[Dict[str, Any]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sink: Optional[GaugeExportSink] = None,
                 metrics: Optional[MonitorMetrics] = None,
                 logger: StructuredLogger = health_logger):
        self.dependencies: Dict[str, DependencyConfig] = {dep.name: dep for dep in dependencies}
        self.notifier = notifier
        self.http_timeout = http_timeout
        self.handshake_timeout = handshake_timeout
        self.database_timeout = database_timeout
        self.metrics = metrics
        self.logger = logger
        self._transport = transport
        self._results: ConcurrentTable = ConcurrentTable()

        self._pools: Dict[str, Any] = dict(pools or {})
        self._owned_engines: List[Engine] = []
        for dep in self.dependencies.values():
            if dep.kind == DependencyKind.DATABASE.value and dep.name not in self._pools:
                engine = create_pool_engine(dep.url, database_timeout)
                self._pools[dep.name] = engine
                self._owned_engines.append(engine)

        if sink is not None:
            for name in self.dependencies:
                sink.register(
                    "external_service_up",
                    "External service availability (last observed)",
                    "service",
                    name,
                    self._availability_reader(name)
                )

    def _availability_reader(self, name: str):
        def read() -> float:
            return 1.0 if self.notifier.is_up(name) else 0.0
        return read

    # Probes: return True or raise

    async def _probe_http(self, dep: DependencyConfig, method: str) -> bool:
        async with httpx.AsyncClient(timeout=self.http_timeout, transport=self._transport) as client:
            if method == "POST":
                response = await client.request(method, dep.url, content=b"")
            else:
                response = await client.request(method, dep.url)
        if not response.is_success:
            raise ProbeFailed(f"HTTP {response.status_code}")
        return True

    async def _probe_websocket(self, dep: DependencyConfig) -> bool:
        """Resolve on the first of: handshake done, error, close, or timeout."""
        loop = asyncio.get_running_loop()
        outcome = loop.create_future()

        def resolve(available: bool, reason: Optional[str] = None):
            if not outcome.done():
                outcome.set_result((available, reason))

        async def handshake():
            try:
                async with websockets.connect(dep.url, open_timeout=None, ping_interval=None,
                                              close_timeout=WEBSOCKET_CLOSE_GRACE):
                    resolve(True)
            except Exception as e:
                resolve(False, f"{e.__class__.__name__}: {e}")
            resolve(False, "connection closed before the handshake completed")

        timer = loop.call_later(
            self.handshake_timeout, resolve, False,
            f"no handshake within {self.handshake_timeout}s"
        )
        started = loop.time()
        task = asyncio.create_task(handshake())
        try:
            available, reason = await outcome
            if available:
                # The close handshake only gets what is left of the handshake budget
                remaining = self.handshake_timeout - (loop.time() - started)
                await asyncio.wait({task}, timeout=max(0.0, min(WEBSOCKET_CLOSE_GRACE, remaining)))
        finally:
            timer.cancel()
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if not available:
            raise ProbeFailed(reason)
        return True

    def _lease_connection(self, pool) -> bool:
        with pool.connect() as conn:
            if conn.closed:
                raise ProbeFailed("pooled connection is closed")
        return True

    async def _probe_database(self, dep: DependencyConfig) -> bool:
        pool = self._pools[dep.name]
        return await asyncio.wait_for(
            asyncio.to_thread(self._lease_connection, pool),
            timeout=self.database_timeout
        )

    async def _probe(self, dep: DependencyConfig) -> bool:
        kind = DependencyKind(dep.kind)
        if kind == DependencyKind.HTTP_POST:
            return await self._probe_http(dep, "POST")
        if kind == DependencyKind.HTTP_GET:
            return await self._probe_http(dep, "GET")
        if kind == DependencyKind.WEBSOCKET:
            return await self._probe_websocket(dep)
        return await self._probe_database(dep)

    # Checks

    async def check(self, name: str) -> bool:
        """Probe one dependency, update its status and alert state."""
        dep = self.dependencies[name]
        token = SERVICE.set(name)
        start_time = time.perf_counter()
        error = None
        try:
            try:
                available = await self._probe(dep)
            except Exception as e:
                available = False
                error = f"{e.__class__.__name__}: {e}" if str(e) else e.__class__.__name__

            duration = time.perf_counter() - start_time
            if available:
                self.notifier.mark_up(name)
            else:
                self.notifier.send_alert_once(name)

            self._results.put(name, HealthCheck(
                name=name,
                kind=dep.kind,
                available=available,
                duration_ms=duration * 1000,
                timestamp=_utc_timestamp(),
                error=error
            ))
            if self.metrics:
                self.metrics.record_health_check(name, available, duration)
            self.logger.dependency_check(name, dep.kind, available, duration * 1000, error)
            return available
        finally:
            SERVICE.reset(token)

    async def check_all(self) -> Dict[str, bool]:
        """Run every check concurrently."""
        names = list(self.dependencies)
        results = await asyncio.gather(*(self.check(name) for name in names))
        return dict(zip(names, results))

    async def overall_health(self) -> DependencyHealthReport:
        """AND of every check, with per-dependency details."""
        results = await self.check_all()
        checks = [self._results.get(name) for name in results]
        status = ServiceState.UP if all(results.values()) else ServiceState.DOWN

        self.logger.info(
            f"Dependency health check completed: {status.value}",
            overall_status=status.value,
            total_checks=len(checks),
            available_checks=sum(1 for up in results.values() if up),
            event_type="dependency_health_check"
        )
        return DependencyHealthReport(status=status, timestamp=_utc_timestamp(), checks=checks)

    def last_result(self, name: str) -> Optional[HealthCheck]:
        return self._results.get(name)

    def close(self):
        """Dispose the engines this monitor created."""
        for engine in self._owned_engines:
            engine.dispose()
        self._owned_engines.clear()

#!/usr/bin/env python3
"""
Tests for dependency health checks.

HTTP dependencies are served by an httpx MockTransport, WebSocket
dependencies by local servers (a real websockets server, a TCP server that
never answers the handshake and a closed port), and database dependencies
by a lease-counting fake pool or an in-memory SQLite engine.
"""

import time
import base64
import socket
import asyncio
import hashlib
from contextlib import asynccontextmanager

import httpx
import pytest
import websockets

from conftest import LeaseCountingPool
from observability.config import DependencyConfig
from observability.health import (
    AVAILABLE, UNAVAILABLE, DependencyHealthMonitor, create_pool_engine,
)


def http_transport(status_by_path):
    """MockTransport answering each path with a fixed status; records requests."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_by_path.get(request.url.path, 404))

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport


@asynccontextmanager
async def websocket_server():
    async def handler(ws):
        await ws.wait_closed()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}/stream"


@asynccontextmanager
async def silent_server():
    """Accepts TCP connections and never answers."""
    writers = []

    async def handler(reader, writer):
        writers.append(writer)
        await reader.read()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"ws://127.0.0.1:{port}/stream"
    finally:
        for writer in writers:
            writer.close()
        server.close()
        await server.wait_closed()


WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


@asynccontextmanager
async def close_ignoring_server():
    """Completes the WebSocket handshake, then never answers the close frame."""
    writers = []

    async def handler(reader, writer):
        writers.append(writer)
        request = (await reader.readuntil(b"\r\n\r\n")).decode()
        key = next(
            line.split(":", 1)[1].strip()
            for line in request.split("\r\n")
            if line.lower().startswith("sec-websocket-key:")
        )
        accept = base64.b64encode(hashlib.sha1((key + WEBSOCKET_GUID).encode()).digest()).decode()
        writer.write(
            b"HTTP/1.1 101 Switching Protocols\r\n"
            b"Upgrade: websocket\r\n"
            b"Connection: Upgrade\r\n"
            + f"Sec-WebSocket-Accept: {accept}\r\n\r\n".encode()
        )
        await writer.drain()
        await reader.read()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"ws://127.0.0.1:{port}/stream"
    finally:
        for writer in writers:
            writer.close()
        server.close()
        await server.wait_closed()


def closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def monitor_for(deps, notifier, **kwargs):
    return DependencyHealthMonitor(
        [DependencyConfig(name, kind, url) for name, kind, url in deps],
        notifier,
        **kwargs
    )


class TestHttpChecks:

    @pytest.mark.asyncio
    async def test_post_success(self, notifier):
        transport = http_transport({"/health": 200})
        monitor = monitor_for([("payments", "http_post", "http://payments.local/health")],
                              notifier, transport=transport)

        assert await monitor.check("payments") is True
        assert transport.seen[0].method == "POST"
        assert transport.seen[0].content == b""
        assert transport.seen[0].headers["Content-Length"] == "0"
        assert notifier.is_up("payments")

    @pytest.mark.asyncio
    async def test_get_uses_get(self, notifier):
        transport = http_transport({"/ping": 204})
        monitor = monitor_for([("search", "http_get", "http://search.local/ping")],
                              notifier, transport=transport)

        assert await monitor.check("search") is True
        assert transport.seen[0].method == "GET"
        assert "Content-Length" not in transport.seen[0].headers
        assert transport.seen[0].content == b""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [301, 404, 500, 503])
    async def test_non_2xx_is_unavailable(self, notifier, notifications, status):
        transport = http_transport({"/health": status})
        monitor = monitor_for([("payments", "http_post", "http://payments.local/health")],
                              notifier, transport=transport)

        assert await monitor.check("payments") is False
        assert monitor.last_result("payments").error == f"ProbeFailed: HTTP {status}"
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, notifier):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monitor = monitor_for([("payments", "http_post", "http://payments.local/health")],
                              notifier, transport=httpx.MockTransport(refuse))

        assert await monitor.check("payments") is False
        assert monitor.last_result("payments").error.startswith("ConnectError")

    @pytest.mark.asyncio
    async def test_unknown_dependency(self, notifier):
        monitor = monitor_for([], notifier)

        with pytest.raises(KeyError):
            await monitor.check("missing")


class TestWebSocketChecks:

    @pytest.mark.asyncio
    async def test_handshake_success(self, notifier):
        async with websocket_server() as url:
            monitor = monitor_for([("feed", "websocket", url)], notifier)
            assert await monitor.check("feed") is True

    @pytest.mark.asyncio
    async def test_unresponsive_endpoint_times_out(self, notifier, notifications):
        async with silent_server() as url:
            monitor = monitor_for([("feed", "websocket", url)], notifier)

            start = time.perf_counter()
            available = await monitor.check("feed")
            elapsed = time.perf_counter() - start

        assert available is False
        assert 2.9 <= elapsed < 3.5
        assert "no handshake within 3.0s" in monitor.last_result("feed").error
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_short_handshake_timeout(self, notifier):
        async with silent_server() as url:
            monitor = monitor_for([("feed", "websocket", url)], notifier, handshake_timeout=0.2)

            start = time.perf_counter()
            assert await monitor.check("feed") is False
            assert time.perf_counter() - start < 1.0

    @pytest.mark.asyncio
    async def test_close_wait_stays_within_handshake_budget(self, notifier):
        async with close_ignoring_server() as url:
            monitor = monitor_for([("feed", "websocket", url)], notifier, handshake_timeout=0.5)

            start = time.perf_counter()
            available = await monitor.check("feed")
            elapsed = time.perf_counter() - start

        assert available is True
        assert elapsed < 0.9

    @pytest.mark.asyncio
    async def test_connection_refused(self, notifier):
        url = f"ws://127.0.0.1:{closed_port()}/stream"
        monitor = monitor_for([("feed", "websocket", url)], notifier)

        start = time.perf_counter()
        assert await monitor.check("feed") is False
        assert time.perf_counter() - start < 3.0


class TestDatabaseChecks:

    @pytest.mark.asyncio
    async def test_open_connection_is_available(self, notifier):
        pool = LeaseCountingPool()
        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": pool})

        assert await monitor.check("db") is True
        assert pool.acquired == 1
        assert pool.outstanding == 0

    @pytest.mark.asyncio
    async def test_closed_connection_is_unavailable(self, notifier):
        pool = LeaseCountingPool(closed=True)
        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": pool})

        assert await monitor.check("db") is False
        assert pool.outstanding == 0

    @pytest.mark.asyncio
    async def test_lease_released_when_check_raises(self, notifier):
        pool = LeaseCountingPool(fail_check=True)
        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": pool})

        for _ in range(3):
            assert await monitor.check("db") is False

        assert pool.acquired == 3
        assert pool.outstanding == 0

    @pytest.mark.asyncio
    async def test_acquire_failure_is_unavailable(self, notifier):
        pool = LeaseCountingPool(fail_acquire=True)
        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": pool})

        assert await monitor.check("db") is False
        assert "pool exhausted" in monitor.last_result("db").error

    @pytest.mark.asyncio
    async def test_slow_pool_is_bounded(self, notifier):
        class SlowPool(LeaseCountingPool):
            def connect(self):
                time.sleep(0.5)
                return super().connect()

        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": SlowPool()}, database_timeout=0.1)

        start = time.perf_counter()
        assert await monitor.check("db") is False
        assert time.perf_counter() - start < 0.4
        assert monitor.last_result("db").error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_sqlite_engine(self, notifier):
        monitor = monitor_for([("db", "database", "sqlite://")], notifier)
        try:
            assert await monitor.check("db") is True
        finally:
            monitor.close()

    def test_create_pool_engine_sqlite(self):
        engine = create_pool_engine("sqlite://", pool_timeout=2.0)
        try:
            with engine.connect() as conn:
                assert not conn.closed
        finally:
            engine.dispose()


class TestOverallHealth:

    @pytest.mark.asyncio
    async def test_all_available_is_up(self, notifier):
        transport = http_transport({"/health": 200})
        monitor = monitor_for([
            ("payments", "http_post", "http://payments.local/health"),
            ("db", "database", "postgresql://db.local/app"),
        ], notifier, transport=transport, pools={"db": LeaseCountingPool()})

        report = await monitor.overall_health()

        assert report.up
        assert report.details == {"payments": AVAILABLE, "db": AVAILABLE}
        assert report.to_dict()["status"] == "UP"

    @pytest.mark.asyncio
    async def test_any_unavailable_is_down(self, notifier, notifications):
        transport = http_transport({"/health": 200})
        monitor = monitor_for([
            ("payments", "http_post", "http://payments.local/health"),
            ("db", "database", "postgresql://db.local/app"),
        ], notifier, transport=transport, pools={"db": LeaseCountingPool(fail_check=True)})

        report = await monitor.overall_health()
        await monitor.overall_health()

        body = report.to_dict()
        assert not report.up
        assert body["status"] == "DOWN"
        assert body["details"] == {"payments": AVAILABLE, "db": UNAVAILABLE}
        assert [check["name"] for check in body["checks"]] == ["payments", "db"]
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_service_up_gauge(self, notifier, sink, metrics, registry):
        pool = LeaseCountingPool(fail_check=True)
        monitor = monitor_for([("db", "database", "postgresql://db.local/app")], notifier,
                              pools={"db": pool}, sink=sink, metrics=metrics)
        labels = {"service": "db"}

        assert registry.get_sample_value("external_service_up", labels) == 0.0
        await monitor.check("db")
        assert registry.get_sample_value("external_service_up", labels) == 0.0

        pool.fail_check = False
        await monitor.check("db")
        assert registry.get_sample_value("external_service_up", labels) == 1.0
        assert registry.get_sample_value(
            "actuator_health_checks_total", {"service": "db", "result": "down"}
        ) == 1.0
        assert registry.get_sample_value(
            "actuator_health_checks_total", {"service": "db", "result": "up"}
        ) == 1.0

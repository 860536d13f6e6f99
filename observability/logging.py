"""
Structured JSON logging for the actuator subsystem.

Provides correlation IDs for requests, aggregation cycles and dependency
checks, embedded in every log line as JSON fields.
"""

import json
import uuid
import logging
import time
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar

# Context variables for log correlation
REQUEST_ID: ContextVar[str] = ContextVar('request_id', default=None)
CYCLE_ID: ContextVar[str] = ContextVar('cycle_id', default=None)
SERVICE: ContextVar[str] = ContextVar('service', default=None)


class StructuredLogger:
    """Structured JSON logger with correlation IDs."""

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Remove any existing handlers to avoid duplicates
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        handler = logging.StreamHandler()
        handler.setFormatter(self.JSONFormatter())
        self.logger.addHandler(handler)

        self.logger.propagate = False

    class JSONFormatter(logging.Formatter):
        """JSON formatter with correlation IDs and structured fields."""

        def format(self, record):
            """Format log record as structured JSON."""
            log_entry = {
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'level': record.levelname,
                'logger': record.name,
                'message': record.getMessage(),
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
                'thread': record.thread,
                'process': record.process
            }

            if REQUEST_ID.get():
                log_entry['request_id'] = REQUEST_ID.get()
            if CYCLE_ID.get():
                log_entry['cycle_id'] = CYCLE_ID.get()
            if SERVICE.get():
                log_entry['service'] = SERVICE.get()

            if hasattr(record, 'extra_fields'):
                log_entry.update(record.extra_fields)

            if record.exc_info:
                log_entry['exception'] = self.formatException(record.exc_info)
                log_entry['exception_type'] = record.exc_info[0].__name__ if record.exc_info[0] else None

            return json.dumps(log_entry, default=str)

    def set_level(self, level: str):
        """Set the level from a name such as ``"INFO"``."""
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    def _log_with_extras(self, level: int, message: str, **extra_fields):
        """Log message with extra structured fields."""
        self.logger.log(level, message, extra={'extra_fields': extra_fields})

    def debug(self, message: str, **extra_fields):
        self._log_with_extras(logging.DEBUG, message, **extra_fields)

    def info(self, message: str, **extra_fields):
        self._log_with_extras(logging.INFO, message, **extra_fields)

    def warning(self, message: str, **extra_fields):
        self._log_with_extras(logging.WARNING, message, **extra_fields)

    def error(self, message: str, **extra_fields):
        self._log_with_extras(logging.ERROR, message, **extra_fields)

    def critical(self, message: str, **extra_fields):
        self._log_with_extras(logging.CRITICAL, message, **extra_fields)

    # Specialized logging methods for actuator events
    def aggregation_cycle(self, keys: int, skipped: int, new_keys: int, duration_ms: float):
        """Log a completed stats aggregation cycle."""
        self.debug(
            "Stats aggregation cycle completed",
            keys=keys,
            skipped_keys=skipped,
            new_keys=new_keys,
            latency_ms=duration_ms,
            event_type="aggregation_cycle"
        )

    def source_read_failed(self, source: str, key: Optional[str], error: str):
        """Log a degraded read from a sample source."""
        self.warning(
            f"Failed to read {source}" + (f" for {key}" if key else ""),
            source=source,
            key=key,
            error=error,
            event_type="source_read_failed"
        )

    def dependency_check(self, service: str, kind: str, available: bool,
                         duration_ms: float, error: Optional[str] = None):
        """Log a dependency probe result."""
        level = logging.DEBUG if available else logging.WARNING
        self._log_with_extras(
            level,
            f"Dependency {service} is {'available' if available else 'unavailable'}",
            service=service,
            kind=kind,
            available=available,
            latency_ms=duration_ms,
            error=error,
            event_type="dependency_check"
        )

    def api_request(self, method: str, path: str, status_code: int, duration_ms: float):
        """Log API request."""
        self.info(
            "API request processed",
            method=method,
            path=path,
            status_code=status_code,
            latency_ms=duration_ms,
            event_type="api_request"
        )


# Context management functions
def set_request_context(request_id: str = None, cycle_id: str = None, service: str = None):
    """Set context for logging correlation."""
    if request_id:
        REQUEST_ID.set(request_id)
    if cycle_id:
        CYCLE_ID.set(cycle_id)
    if service:
        SERVICE.set(service)


def clear_request_context():
    """Clear all context variables."""
    for ctx_var in [REQUEST_ID, CYCLE_ID, SERVICE]:
        ctx_var.set(None)


def generate_request_id() -> str:
    """Generate unique request ID."""
    return f"req-{uuid.uuid4().hex[:8]}"


def generate_cycle_id(kind: str) -> str:
    """Generate unique periodic-cycle ID."""
    return f"{kind}-{uuid.uuid4().hex[:8]}"


def route_template(request) -> str:
    """Path template of the matched route, so /items/1 and /items/2 share a key."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return "UNKNOWN"


def track_http_requests(app, timer_registry):
    """Middleware recording each request into ``timer_registry`` and the API log."""
    @app.middleware("http")
    async def request_logging_middleware(request, call_next):
        request_id = generate_request_id()
        set_request_context(request_id=request_id)

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            api_logger.error(
                "HTTP request failed",
                method=request.method,
                path=request.url.path,
                exception_type=e.__class__.__name__,
                error=str(e)
            )
            raise
        finally:
            duration = time.perf_counter() - start_time
            uri = route_template(request)
            if uri == "UNKNOWN" and status_code == 404:
                uri = "NOT_FOUND"
            timer_registry.record_request(request.method, uri, status_code, duration)
            api_logger.api_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration * 1000
            )
            clear_request_context()


# Pre-configured loggers for different components
api_logger = StructuredLogger("actuators.api")
aggregator_logger = StructuredLogger("actuators.aggregator")
trend_logger = StructuredLogger("actuators.trend")
health_logger = StructuredLogger("actuators.health")
alert_logger = StructuredLogger("actuators.alerts")
scheduler_logger = StructuredLogger("actuators.scheduler")

ALL_LOGGERS = (
    api_logger, aggregator_logger, trend_logger,
    health_logger, alert_logger, scheduler_logger,
)


def configure_log_level(level: str):
    """Apply ``level`` to every pre-configured logger."""
    for structured in ALL_LOGGERS:
        structured.set_level(level)

"""
Dependency down alerts.

Each dependency has a two-state status (UP/DOWN) plus an ``alert_sent`` flag.
The first failure of an outage fires exactly one alert; later failures of the
same outage are silent; a success re-arms the alert for the next outage.
"""

from datetime import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import pytz

from .logging import StructuredLogger, alert_logger
from .metrics import MonitorMetrics
from .store import ConcurrentTable

ALERT_TEMPLATE = (
    "⚠ ALERT: [{service}] is DOWN!\n"
    "Time: {time}\n"
    "Environment: {environment}\n"
    "Action Required: Please check immediately."
)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


class ServiceState(Enum):
    """Dependency availability."""
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class ServiceStatus:
    """Last observed state of a dependency and whether its outage was alerted."""
    state: ServiceState
    alert_sent: bool = False


class AlertNotifier:
    """Decides when a dependency alert fires and hands it to ``notify``."""

    def __init__(self, status_table: ConcurrentTable, environment: str = "production",
                 timezone_name: str = "Asia/Kolkata",
                 notify: Optional[Callable[[str], None]] = None,
                 metrics: Optional[MonitorMetrics] = None,
                 logger: StructuredLogger = alert_logger):
        self.status_table = status_table
        self.environment = environment
        self.timezone = pytz.timezone(timezone_name)
        self.notify = notify or self._log_notification
        self.metrics = metrics
        self.logger = logger

    def format_alert(self, service: str, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(self.timezone)
        if when.tzinfo is None:
            when = pytz.utc.localize(when)
        return ALERT_TEMPLATE.format(
            service=service,
            time=when.astimezone(self.timezone).strftime(TIME_FORMAT),
            environment=self.environment,
        )

    def send_alert_once(self, service: str) -> bool:
        """Mark ``service`` DOWN; alert unless this outage was already alerted."""
        fired = False

        def transition(current: Optional[ServiceStatus]) -> ServiceStatus:
            nonlocal fired
            fired = current is None or not current.alert_sent
            return ServiceStatus(ServiceState.DOWN, alert_sent=True)

        self.status_table.update(service, transition)
        if not fired:
            return False

        message = self.format_alert(service)
        try:
            self.notify(message)
        except Exception as e:
            self.logger.error(
                f"Alert notification for {service} failed: {e}",
                service=service,
                error=str(e),
                event_type="alert_notification_failed"
            )

        if self.metrics:
            self.metrics.record_alert_sent(service)
        self.logger.warning(f"Alert fired: {service} is DOWN", service=service, event_type="alert_fired")
        return True

    def mark_up(self, service: str):
        """Mark ``service`` UP and re-arm its alert."""
        previous = self.status_table.get(service)
        self.status_table.put(service, ServiceStatus(ServiceState.UP, alert_sent=False))
        if previous is not None and previous.state == ServiceState.DOWN:
            self.logger.info(f"Dependency recovered: {service}", service=service, event_type="alert_resolved")

    def status(self, service: str) -> Optional[ServiceStatus]:
        return self.status_table.get(service)

    def is_up(self, service: str) -> bool:
        current = self.status_table.get(service)
        return current is not None and current.state == ServiceState.UP

    def _log_notification(self, message: str):
        self.logger.critical(
            "ALERT NOTIFICATION",
            notification=message,
            event_type="alert_notification"
        )

"""
Scheduler module.

Provides the APScheduler-based periodic task scheduler driving the stats
aggregation and trend sampling cycles.
"""

from .tick import MonitoringScheduler

__all__ = ['MonitoringScheduler']

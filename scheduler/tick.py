"""
APScheduler service driving the periodic actuator tasks.

Two scheduling policies are supported:

- fixed delay: the next run is scheduled only after the current run has
  finished, so a slow run pushes the next one back and runs never overlap
- fixed rate: runs are scheduled at absolute intervals regardless of how long
  the previous run took; a bounded number of overlapping runs is allowed
"""

import time
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from observability.logging import scheduler_logger, set_request_context, clear_request_context, generate_cycle_id

logger = scheduler_logger


class MonitoringScheduler:
    """Background scheduler owned by the process, with an orderly shutdown."""

    def __init__(self, timezone_name: str = "UTC"):
        job_defaults = {
            'coalesce': True,           # Combine missed executions
            'max_instances': 1,         # Prevent concurrent job instances
            'misfire_grace_time': 30    # Grace period for late jobs
        }
        self.scheduler = BackgroundScheduler(job_defaults=job_defaults, timezone=timezone_name)
        self._fixed_delay_jobs: Dict[str, Tuple[Callable[[], object], float]] = {}
        self._shutdown = threading.Event()
        # Guards the shutdown flag against a reschedule racing scheduler.shutdown()
        self._reschedule_lock = threading.Lock()

        logger.info(f"Monitoring scheduler initialized with timezone: {timezone_name}")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def schedule_fixed_delay(self, job_id: str, func: Callable[[], object],
                             delay: float, initial_delay: float = 0.0):
        """Run ``func`` repeatedly, waiting ``delay`` seconds after each run ends."""
        if delay <= 0:
            raise ValueError(f"Delay must be positive, got {delay}")
        self._fixed_delay_jobs[job_id] = (func, delay)
        self._schedule_next(job_id, initial_delay)
        logger.info(f"Scheduled fixed-delay job {job_id} every {delay}s", job_id=job_id, delay_seconds=delay)

    def schedule_fixed_rate(self, job_id: str, func: Callable[[], object],
                            interval: float, max_overlap: int = 2):
        """Run ``func`` every ``interval`` seconds, starting now."""
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(seconds=interval),
            args=[job_id, func],
            id=job_id,
            replace_existing=True,
            max_instances=max_overlap,
            coalesce=False,
            next_run_time=datetime.now(timezone.utc),
            name=f"Fixed rate: {job_id}"
        )
        logger.info(f"Scheduled fixed-rate job {job_id} every {interval}s", job_id=job_id, interval_seconds=interval)

    def _schedule_next(self, job_id: str, delay: float):
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self._run_fixed_delay,
            DateTrigger(run_date=run_date, timezone=timezone.utc),
            args=[job_id],
            id=job_id,
            replace_existing=True,
            name=f"Fixed delay: {job_id}"
        )

    def _run_fixed_delay(self, job_id: str):
        func, delay = self._fixed_delay_jobs[job_id]
        try:
            self._run_job(job_id, func)
        finally:
            with self._reschedule_lock:
                if not self._shutdown.is_set():
                    self._schedule_next(job_id, delay)

    def _run_job(self, job_id: str, func: Callable[[], object]) -> bool:
        """Run one job; failures are logged and never stop the schedule."""
        set_request_context(cycle_id=generate_cycle_id(job_id))
        start_time = time.perf_counter()
        try:
            func()
            logger.debug(
                f"Job {job_id} completed",
                job_id=job_id,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                event_type="job_completed"
            )
            return True
        except Exception as e:
            logger.error(
                f"Job {job_id} failed: {e}",
                job_id=job_id,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                error=str(e),
                event_type="job_failed"
            )
            return False
        finally:
            clear_request_context()

    def start(self):
        logger.info("Starting monitoring scheduler", jobs=len(self.scheduler.get_jobs()))
        self.scheduler.start()

    def shutdown(self, wait: bool = True):
        """Stop ticking; with ``wait`` block until running jobs finish."""
        with self._reschedule_lock:
            self._shutdown.set()
        if self.scheduler.running:
            logger.info("Shutting down monitoring scheduler")
            self.scheduler.shutdown(wait=wait)


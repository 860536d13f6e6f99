"""
Raw request timers.

Every HTTP request handled by the service is recorded into a ``RequestTimer``
identified by its full tag set (method, uri, status, outcome). The stats
aggregator later merges all timers that share a (method, uri) pair.
"""

import threading
from typing import Dict, Iterable, List, Tuple

HTTP_SERVER_REQUESTS = "http.server.requests"


def outcome_for_status(status_code: int) -> str:
    """Map an HTTP status code to its outcome tag."""
    if 100 <= status_code < 200:
        return "INFORMATIONAL"
    if 200 <= status_code < 300:
        return "SUCCESS"
    if 300 <= status_code < 400:
        return "REDIRECTION"
    if 400 <= status_code < 500:
        return "CLIENT_ERROR"
    if 500 <= status_code < 600:
        return "SERVER_ERROR"
    return "UNKNOWN"


class RequestTimer:
    """Cumulative timer: count, total time and max duration in seconds."""

    def __init__(self, name: str, tags: Dict[str, str]):
        self.name = name
        self.tags = dict(tags)
        self._count = 0
        self._total_time = 0.0
        self._max = 0.0
        self._lock = threading.Lock()

    def record(self, duration_seconds: float):
        if duration_seconds < 0:
            raise ValueError(f"Negative duration: {duration_seconds}")
        with self._lock:
            self._count += 1
            self._total_time += duration_seconds
            if duration_seconds > self._max:
                self._max = duration_seconds

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def total_time(self) -> float:
        with self._lock:
            return self._total_time

    @property
    def max(self) -> float:
        with self._lock:
            return self._max

    def __repr__(self):
        return f"RequestTimer({self.name!r}, {self.tags!r})"


class RequestTimerRegistry:
    """In-process source of request timers, queried by metric name."""

    def __init__(self):
        self._timers: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], RequestTimer] = {}
        self._lock = threading.Lock()

    def timer(self, name: str, **tags: str) -> RequestTimer:
        """Return the timer for ``name`` and ``tags``, creating it on first use."""
        ident = (name, tuple(sorted(tags.items())))
        with self._lock:
            timer = self._timers.get(ident)
            if timer is None:
                timer = RequestTimer(name, tags)
                self._timers[ident] = timer
            return timer

    def record_request(self, method: str, uri: str, status_code: int, duration_seconds: float):
        self.timer(
            HTTP_SERVER_REQUESTS,
            method=method,
            uri=uri,
            status=str(status_code),
            outcome=outcome_for_status(status_code),
        ).record(duration_seconds)

    def timers(self, name: str = HTTP_SERVER_REQUESTS) -> List[RequestTimer]:
        with self._lock:
            return [t for (timer_name, _), t in self._timers.items() if timer_name == name]

    def clear(self):
        with self._lock:
            self._timers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)


def group_by_key(timers: Iterable) -> Dict[str, list]:
    """Group timers by ``"<METHOD> <URI>"``, skipping timers missing either tag."""
    groups: Dict[str, list] = {}
    for timer in timers:
        method = timer.tags.get("method")
        uri = timer.tags.get("uri")
        if not method or not uri:
            continue
        groups.setdefault(f"{method} {uri}", []).append(timer)
    return groups

# SPDX-License-Identifier: Apache-2.0

"""
Performance Monitoring Service

Keeps the last day of API call timings, staff interactions and unhandled
errors in memory for the admin monitoring view, and can forward a snapshot
to an external collector.
"""

import os
import time
import uuid
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Deque, Dict, List, Optional

import requests
from opentelemetry import trace

from services.health import collect_system_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RETENTION_SECONDS = 24 * 60 * 60
MAX_ENTRIES = 1000
DEFAULT_LIMIT = 50

API_CALL_DURATION = "api_call_duration"
API_ERROR = "api_error_rate"
ERROR_COUNT = "error_count"

REPORT_TYPES = ("summary", "interactions", "errors", "all")


class MonitoringExportError(Exception):
    """Raised when the snapshot could not be delivered to the collector."""


@dataclass
class Metric:
    name: str
    value: float
    unit: str
    timestamp: float
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class Interaction:
    event: str
    path: str
    timestamp: float
    session_id: str
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorEntry:
    error: str
    error_class: str
    path: str
    timestamp: float
    session_id: str
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None


class PerformanceMonitor:
    """
    In-process performance recorder.

    Recording is a no-op while disabled; reads always work and return what
    was kept. Entries older than ``retention_seconds`` are dropped on each
    write, and each list is capped at ``max_entries``.

    Args:
        enabled: Whether tracking calls record anything
        endpoint: Collector URL for ``send``; empty disables forwarding
        session: requests session, injectable for tests
        clock: Time source in epoch seconds
        system_metrics: Callable returning host metrics for exports
    """

    def __init__(self, enabled: bool = False, endpoint: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10,
                 retention_seconds: float = RETENTION_SECONDS, max_entries: int = MAX_ENTRIES,
                 clock: Callable[[], float] = time.time,
                 system_metrics: Callable[[], Dict[str, Any]] = collect_system_metrics):
        self.enabled = enabled
        self.endpoint = endpoint if endpoint is not None else os.getenv("MONITORING_ENDPOINT", "")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retention_seconds = retention_seconds
        self.clock = clock
        self.system_metrics = system_metrics
        self.session_id = f"{int(clock() * 1000)}-{uuid.uuid4().hex[:9]}"
        self._lock = threading.Lock()
        self._metrics: Deque[Metric] = deque(maxlen=max_entries)
        self._interactions: Deque[Interaction] = deque(maxlen=max_entries)
        self._errors: Deque[ErrorEntry] = deque(maxlen=max_entries)

    # Recording

    def track_api_call(self, endpoint: str, duration_ms: float, status: int,
                       user_id: Optional[str] = None) -> None:
        """Record one API call; 4xx and 5xx also count toward the error rate."""
        if not self.enabled:
            return
        now = self.clock()
        with self._lock:
            self._metrics.append(Metric(
                API_CALL_DURATION, duration_ms, "ms", now,
                {"endpoint": endpoint, "status": str(status), "user_id": user_id or "anonymous"}
            ))
            if status >= 400:
                self._metrics.append(Metric(API_ERROR, 1, "count", now,
                                            {"endpoint": endpoint, "status": str(status)}))
            self._prune(now)

    def track_interaction(self, event: str, path: str, user_id: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        now = self.clock()
        with self._lock:
            self._interactions.append(Interaction(event, path, now, self.session_id, user_id, dict(metadata or {})))
            self._prune(now)

    def track_error(self, error: BaseException, path: str, user_id: Optional[str] = None,
                    user_agent: Optional[str] = None, ip: Optional[str] = None) -> None:
        if not self.enabled:
            return
        now = self.clock()
        with self._lock:
            self._errors.append(ErrorEntry(str(error), error.__class__.__name__, path, now,
                                           self.session_id, user_id, user_agent, ip))
            self._metrics.append(Metric(ERROR_COUNT, 1, "count", now,
                                        {"path": path, "error_type": error.__class__.__name__}))
            self._prune(now)

    def track_metric(self, name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None) -> None:
        if not self.enabled:
            return
        now = self.clock()
        with self._lock:
            self._metrics.append(Metric(name, value, unit, now, dict(tags or {})))
            self._prune(now)

    def _prune(self, now: float) -> None:
        cutoff = now - self.retention_seconds
        for entries in (self._metrics, self._interactions, self._errors):
            while entries and entries[0].timestamp <= cutoff:
                entries.popleft()

    # Reading

    def summary(self) -> Dict[str, Any]:
        """
        Average response time, error rate and totals over the kept API calls.

        The error rate is the percentage of calls that ended in 4xx or 5xx,
        rounded to two decimals.
        """
        with self._lock:
            durations = [m.value for m in self._metrics if m.name == API_CALL_DURATION]
            failures = sum(1 for m in self._metrics if m.name == API_ERROR)

        total = len(durations)
        return {
            "avg_api_response_time_ms": round(sum(durations) / total) if total else 0,
            "error_rate": round(failures / total * 100, 2) if total else 0,
            "total_requests": total,
            "total_errors": failures,
        }

    def recent_interactions(self, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        """Newest interactions first."""
        with self._lock:
            entries = list(self._interactions)
        return [asdict(entry) for entry in reversed(entries)][:max(limit, 0)]

    def recent_errors(self, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        """Newest errors first."""
        with self._lock:
            entries = list(self._errors)
        return [asdict(entry) for entry in reversed(entries)][:max(limit, 0)]

    def export(self) -> Dict[str, Any]:
        """Everything kept, plus the summary and current host metrics."""
        with self._lock:
            metrics = [asdict(m) for m in self._metrics]
            interactions = [asdict(i) for i in self._interactions]
            errors = [asdict(e) for e in self._errors]
        return {
            "metrics": metrics,
            "interactions": interactions,
            "errors": errors,
            "summary": self.summary(),
            "system_metrics": self.system_metrics(),
            "session_id": self.session_id,
            "timestamp": self.clock(),
        }

    def report(self, report_type: str, limit: int = DEFAULT_LIMIT) -> Any:
        """
        Build the data for one admin report.

        Args:
            report_type: ``summary``, ``interactions``, ``errors`` or ``all``
            limit: Cap for the interaction and error lists

        Returns:
            Report data

        Raises:
            ValueError: For an unknown report type
        """
        if report_type == "summary":
            return self.summary()
        if report_type == "interactions":
            return self.recent_interactions(limit)
        if report_type == "errors":
            return self.recent_errors(limit)
        if report_type == "all":
            return self.export()
        raise ValueError(f"Unknown report type: {report_type}")

    # Forwarding

    def send(self) -> bool:
        """
        Post the export to the configured collector.

        Returns:
            False when disabled or no collector is configured, True once sent

        Raises:
            MonitoringExportError: When the collector call fails
        """
        if not self.enabled or not self.endpoint:
            return False

        with tracer.start_as_current_span("monitoring.send") as span:
            data = self.export()
            span.set_attribute("monitoring.metric_count", len(data["metrics"]))
            try:
                response = self.session.post(self.endpoint, json=data, timeout=self.timeout)
            except requests.RequestException as e:
                logger.error(f"Monitoring export failed: {str(e)}")
                raise MonitoringExportError(f"Monitoring export failed: {str(e)}")

            if not response.ok:
                logger.error(f"Monitoring collector returned {response.status_code}")
                raise MonitoringExportError(f"Monitoring collector returned {response.status_code}")

        logger.info("Monitoring data sent", extra={"endpoint": self.endpoint})
        return True

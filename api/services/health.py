# SPDX-License-Identifier: Apache-2.0

"""
Health Check Service

Checks the three dependencies the portal cannot work without (database,
document storage and token signing) and reports Redis as an optional extra.
"""

import os
import time
import psutil
from datetime import datetime
from typing import Dict, Any, List
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


class HealthCheckService:
    """Service for system health monitoring."""

    def __init__(self, mongodb_service, storage, auth_service, redis_service=None):
        self.mongodb_service = mongodb_service
        self.storage = storage
        self.auth_service = auth_service
        self.redis_service = redis_service
        self.service_version = SERVICE_VERSION
        self.started_at = time.time()

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get health status including all dependencies and metrics."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            database = self._run_check("database", self._check_database)
            storage = self._run_check("storage", self._check_storage)
            auth = self._run_check("auth", self._check_auth)

            dependencies = {"database": database, "storage": storage, "auth": auth}
            if self.redis_service is not None:
                dependencies["redis"] = self._run_check("redis", self._check_redis)

            overall_status = self._determine_overall_status(
                [database["status"], storage["status"], auth["status"]]
            )
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
            })

            return {
                "status": overall_status,
                "service": "permit-portal-api",
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "uptime_seconds": round(time.time() - self.started_at, 1),
                "response_time_ms": response_time_ms,
                "checks": {name: dep["healthy"] for name, dep in dependencies.items()},
                "dependencies": dependencies,
                "system_metrics": self._get_system_metrics(),
            }

    def _run_check(self, name: str, check) -> Dict[str, Any]:
        with tracer.start_as_current_span(f"health.{name}_check") as span:
            start_time = time.time()
            try:
                details = dict(check() or {})
                status = details.pop("status", "healthy")
            except Exception as e:
                span.record_exception(e)
                logger.warning(f"Health check {name} failed: {str(e)}")
                details, status = {"error": str(e)}, "unhealthy"

            span.set_attribute(f"{name}.status", status)
            return {
                "status": status,
                "healthy": status == "healthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
                **details,
            }

    def _check_database(self) -> Dict[str, Any]:
        return self.mongodb_service.health_check()

    def _check_storage(self) -> Dict[str, Any]:
        return self.storage.health_check()

    def _check_auth(self) -> Dict[str, Any]:
        if not self.auth_service.self_test():
            return {"status": "unhealthy", "error": "Token round trip failed"}
        return {"algorithm": self.auth_service.algorithm}

    def _check_redis(self) -> Dict[str, Any]:
        return self.redis_service.health_check()

    def _get_system_metrics(self) -> Dict[str, Any]:
        return collect_system_metrics()

    def _determine_overall_status(self, dependency_statuses: List[str]) -> str:
        """Determine overall system status based on dependency health."""
        if all(status == "healthy" for status in dependency_statuses):
            return "healthy"
        elif any(status == "healthy" for status in dependency_statuses):
            return "degraded"
        return "unhealthy"


def collect_system_metrics() -> Dict[str, Any]:
    """Get basic system performance metrics."""
    try:
        memory = psutil.virtual_memory()
        return {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory": {
                "used_mb": round(memory.used / 1024 / 1024, 2),
                "total_mb": round(memory.total / 1024 / 1024, 2),
                "percent": memory.percent
            },
            "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
        }
    except Exception as e:
        return {"error": f"Failed to collect system metrics: {str(e)}"}

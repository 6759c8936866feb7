"""
Health and readiness probes for the order service.

Liveness never touches dependencies. Readiness checks the database through
the application's own engine, Redis when ``REDIS_URL`` is configured, and
local disk and memory headroom.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text, inspect
from sqlalchemy.engine import Engine
from typing import Callable, Dict, Any, Optional
import os
import time
import redis
from datetime import datetime, timezone
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)

def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

class ServiceHealth:
    def __init__(
        self,
        service_name: str,
        version: str,
        engine: Engine,
        redis_url: Optional[str] = None,
        metrics_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine = engine
        self.redis_url = redis_url
        self.metrics_provider = metrics_provider
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            """Liveness summary for load balancers."""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.readiness_checks()
            overall_status = self.overall_status(checks)
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE if overall_status == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(status_code=status_code, content={
                "status": overall_status,
                "version": self.version,
                "serviceId": self.service_name,
                "checks": checks,
                "timestamp": _now()
            })

        @router.get("/health/startup")
        def startup():
            checks = {
                "database:schema": self._check_schema(),
            }
            if self.overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            body = {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }
            if self.metrics_provider is not None:
                body["orders"] = self.metrics_provider()
            return body

        return router

    def readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {"database:connectivity": self._check_database()}
        if self.redis_url:
            checks["cache:connectivity"] = self._check_redis()
        checks["storage:disk_space"] = self._check_disk_space()
        checks["system:memory"] = self._check_memory()
        return checks

    def _check_database(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": HealthStatus.PASS,
                "componentType": "datastore",
                "observedValue": f"{(time.time() - start_time) * 1000:.2f}",
                "observedUnit": "ms",
                "time": _now()
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _now()}

    def _check_schema(self) -> Dict[str, Any]:
        """Order tables must exist before the service takes traffic."""
        try:
            tables = set(inspect(self.engine).get_table_names())
        except Exception as e:
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _now()}
        missing = {"orders", "order_items", "menu_items"} - tables
        if missing:
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": f"Missing tables: {', '.join(sorted(missing))}",
                "time": _now()
            }
        return {"status": HealthStatus.PASS, "componentType": "datastore", "time": _now()}

    def _check_redis(self) -> Dict[str, Any]:
        try:
            redis.from_url(self.redis_url, socket_connect_timeout=1).ping()
            return {"status": HealthStatus.PASS, "componentType": "cache", "time": _now()}
        except Exception as e:
            # The order path never depends on Redis
            return {"status": HealthStatus.WARN, "componentType": "cache", "output": str(e), "time": _now()}

    def _check_disk_space(self) -> Dict[str, Any]:
        free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        if free_gb < 1:
            status_val = HealthStatus.FAIL
        elif free_gb < 5:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{free_gb:.2f}",
            "observedUnit": "GB",
            "time": _now()
        }

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        if available_mb < 100:
            status_val = HealthStatus.FAIL
        elif available_mb < 500:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{available_mb:.2f}",
            "observedUnit": "MB",
            "time": _now()
        }

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS

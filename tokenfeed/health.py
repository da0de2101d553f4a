"""
Health checks for liveness and readiness probes.
"""
from datetime import datetime, timezone
from typing import Dict, Any
import time
import psutil
from .logging import get_logger
from .session import FeedSession, SessionState

logger = get_logger()


class HealthChecker:
    """
    Health checker for the token feed service.

    Provides:
    - Liveness checks (is the process serving?)
    - Readiness checks (is the ledger reachable and the feed live?)
    """

    def __init__(self, service_name: str = "tokenfeed", version: str = "0.1.0"):
        self.service_name = service_name
        self.version = version

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def liveness(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._now(),
        }

    async def readiness(self, session: FeedSession | None) -> Dict[str, Any]:
        """
        Readiness check.

        Checks:
        - Ledger connectivity
        - Feed session state (backfill settled, no failure)
        - Memory availability

        Returns:
            dict: Readiness status with detailed check results
        """
        checks = {
            "ledger": await self._check_ledger(session),
            "feed": self._check_feed(session),
            "memory": self._check_memory(),
        }
        ready = all(check["status"] in ("ok", "warning") for check in checks.values())

        return {
            "status": "ready" if ready else "not_ready",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._now(),
            "checks": checks,
        }

    async def _check_ledger(self, session: FeedSession | None) -> Dict[str, Any]:
        if session is None:
            return {"status": "error", "error": "session not started"}

        start = time.time()
        healthy = await session.ledger.health_check()
        latency_ms = round((time.time() - start) * 1000, 2)
        if not healthy:
            logger.warning("ledger_health_check_failed", latency_ms=latency_ms)
            return {"status": "error", "latency_ms": latency_ms}
        return {"status": "ok", "latency_ms": latency_ms}

    def _check_feed(self, session: FeedSession | None) -> Dict[str, Any]:
        if session is None:
            return {"status": "error", "error": "session not started"}

        status = session.status()
        if session.state is SessionState.LIVE:
            return {"status": "ok", **status}
        if session.state is SessionState.FAILED:
            return {"status": "error", **status}
        return {"status": "pending", **status}

    def _check_memory(self, threshold_mb: float = 50.0) -> Dict[str, Any]:
        """
        Check available memory.

        Args:
            threshold_mb: Minimum available memory in MB (default: 50.0)
        """
        try:
            memory = psutil.virtual_memory()
            available_mb = memory.available / (1024**2)

            if available_mb < threshold_mb:
                status = "error"
            elif available_mb < threshold_mb * 2:
                status = "warning"
            else:
                status = "ok"

            return {
                "status": status,
                "available_mb": round(available_mb, 2),
                "used_percent": memory.percent,
            }

        except psutil.Error as e:
            logger.warning("memory_health_check_failed", error=str(e))
            return {
                "status": "error",
                "error": str(e),
            }
